# mediarelay/infra/backends/mirror_fleets.py
"""
Phases 3 and 4: third-party mirror fleets.

Both fleets race their endpoint table through ``FleetRacer``; an endpoint
fails on transport errors, non-2xx answers or when its payload offers
nothing for the requested kind.  The phase fails with ``FleetExhausted``
carrying one error entry per consulted endpoint.

Piped    GET {base}/streams/{id}
         {"title", "audioStreams": [{url, mimeType, codec, bitrate}],
                   "videoStreams": [{url, mimeType, quality, videoOnly}]}

Invidious GET {base}/api/v1/videos/{id}?local=true
         {"title", "adaptiveFormats": [{url, type, encoding, bitrate, qualityLabel}],
                   "formatStreams":   [{url, type, qualityLabel}]}
"""
from __future__ import annotations

from typing import Any, Optional, Sequence
from urllib.parse import urljoin

from mediarelay.core.domain import BackendName, Candidate, MediaKind, MirrorEndpoint
from mediarelay.core.errors import FleetExhausted, NoUsableStream
from mediarelay.core.racer import FleetRacer
from mediarelay.infra.backends import mirrors
from mediarelay.infra.backends.base import BaseBackend, mime_essence, pick_preferred
from mediarelay.infra.network_context import NetworkContext


def _bitrate(entry: dict[str, Any]) -> int:
    try:
        return int(entry.get("bitrate") or 0)
    except (TypeError, ValueError):
        return 0


class MirrorFleet(BaseBackend):
    """Common race-and-normalise flow. Subclasses provide URL and selection."""

    name: BackendName

    def __init__(
        self,
        endpoints: Sequence[MirrorEndpoint],
        timeout: float,
        racer: FleetRacer | None = None,
        context: NetworkContext | None = None,
        name: BackendName | None = None,
    ):
        super().__init__(context=context, timeout=timeout)
        if name is not None:
            self.name = name
        self.endpoints = tuple(endpoints)
        if racer is None:
            from mediarelay.config import settings

            racer = FleetRacer(subset_size=settings.fleet_subset_size)
        racer.label = self.name.value
        self.racer = racer

    async def resolve(self, content_id: str, kind: MediaKind) -> Candidate:
        errors: list[str] = []
        candidate = await self.racer.race(
            self.endpoints,
            lambda endpoint: self.probe(endpoint, content_id, kind),
            errors,
        )
        if candidate is None:
            raise FleetExhausted(self.name.value, errors)
        return candidate

    async def probe(self, endpoint: MirrorEndpoint, content_id: str, kind: MediaKind) -> Candidate:
        """Query one endpoint. Raises on any failure of that endpoint."""
        payload = await self._get_json(self.stream_url(endpoint, content_id))
        candidate = self.select(payload, endpoint, content_id, kind)
        if candidate is None:
            raise NoUsableStream(f"no {kind.tunnel_kind.value} stream")
        return candidate

    def stream_url(self, endpoint: MirrorEndpoint, content_id: str) -> str:
        raise NotImplementedError

    def select(
        self,
        payload: dict[str, Any],
        endpoint: MirrorEndpoint,
        content_id: str,
        kind: MediaKind,
    ) -> Optional[Candidate]:
        raise NotImplementedError


class PipedFleet(MirrorFleet):
    name = BackendName.MIRROR_A

    def __init__(self, endpoints=None, timeout=None, racer=None, context=None, name=None, client=False):
        from mediarelay.config import settings

        super().__init__(
            endpoints=endpoints if endpoints is not None else mirrors.piped_endpoints(client=client),
            timeout=timeout or settings.mirror_a_timeout,
            racer=racer,
            context=context,
            name=name,
        )

    def stream_url(self, endpoint: MirrorEndpoint, content_id: str) -> str:
        return f"{endpoint.base_url.rstrip('/')}/streams/{content_id}"

    def select(self, payload, endpoint, content_id, kind):
        if kind.tunnel_kind is MediaKind.AUDIO:
            streams = sorted(
                (s for s in payload.get("audioStreams") or [] if s.get("url")),
                key=_bitrate,
                reverse=True,
            )
            chosen = pick_preferred(streams, [
                lambda s: "opus" in (s.get("codec") or "").lower(),
                lambda s: True,
            ])
        else:
            streams = [s for s in payload.get("videoStreams") or [] if s.get("url")]
            chosen = pick_preferred(streams, [
                lambda s: s.get("quality") == "720p" and not s.get("videoOnly"),
                lambda s: s.get("quality") == "720p",
                lambda s: not s.get("videoOnly"),
            ])

        if chosen is None:
            return None
        return Candidate(
            source_url=chosen["url"],
            title=payload.get("title") or content_id,
            origin_backend=self.name,
            content_type=mime_essence(chosen.get("mimeType")),
        )


class InvidiousFleet(MirrorFleet):
    name = BackendName.MIRROR_B

    def __init__(self, endpoints=None, timeout=None, racer=None, context=None, name=None, client=False):
        from mediarelay.config import settings

        super().__init__(
            endpoints=endpoints if endpoints is not None else mirrors.invidious_endpoints(client=client),
            timeout=timeout or settings.mirror_b_timeout,
            racer=racer,
            context=context,
            name=name,
        )

    def stream_url(self, endpoint: MirrorEndpoint, content_id: str) -> str:
        # local=true makes the instance proxy the bytes; upstream URLs are bound to its IP.
        return f"{endpoint.base_url.rstrip('/')}/api/v1/videos/{content_id}?local=true"

    def select(self, payload, endpoint, content_id, kind):
        adaptive = [f for f in payload.get("adaptiveFormats") or [] if f.get("url")]

        if kind.tunnel_kind is MediaKind.AUDIO:
            audio = sorted(
                (f for f in adaptive if (f.get("type") or "").startswith("audio/")),
                key=_bitrate,
                reverse=True,
            )
            chosen = pick_preferred(audio, [
                lambda f: f.get("encoding") == "opus" or "opus" in (f.get("type") or ""),
                lambda f: True,
            ])
        else:
            # (entry, video_only)
            streams = [(f, False) for f in payload.get("formatStreams") or [] if f.get("url")]
            streams += [(f, True) for f in adaptive if (f.get("type") or "").startswith("video/")]
            picked = pick_preferred(streams, [
                lambda s: s[0].get("qualityLabel") == "720p" and not s[1],
                lambda s: s[0].get("qualityLabel") == "720p",
                lambda s: not s[1],
            ])
            chosen = picked[0] if picked else None

        if chosen is None:
            return None
        return Candidate(
            source_url=urljoin(endpoint.base_url.rstrip("/") + "/", chosen["url"]),
            title=payload.get("title") or content_id,
            origin_backend=self.name,
            content_type=mime_essence(chosen.get("type")),
        )
