# mediarelay/infra/backends/innertube_fleet.py
"""
Client-side class C: the player API queried directly from the caller's network.

Requests from a residential IP are far less often refused than server ones,
but many formats then only come with a ``signatureCipher``.  Those go through
one extra round-trip to a decipher helper:

    POST {helper}/decipher  {"video_id": ..., "signature_cipher": ...}  →  {"url": ...}
"""
from __future__ import annotations

from typing import Sequence

from mediarelay.core.domain import BackendName, Candidate, MediaKind, MirrorEndpoint
from mediarelay.core.errors import BackendError, NoUsableStream
from mediarelay.core.racer import FleetRacer
from mediarelay.infra.backends import mirrors
from mediarelay.infra.backends.base import mime_essence
from mediarelay.infra.backends.innertube import (
    DeviceProfile,
    InnertubeClient,
    get_profile,
    parse_formats,
    select_format,
    video_title,
)
from mediarelay.infra.backends.mirror_fleets import MirrorFleet
from mediarelay.infra.logging_config import get_logger, mask_url
from mediarelay.infra.network_context import NetworkContext

logger = get_logger(__name__)


class InnertubeFleet(MirrorFleet):
    name = BackendName.CLIENT_MIRROR_C

    def __init__(
        self,
        endpoints: Sequence[MirrorEndpoint] | None = None,
        helpers: Sequence[str] | None = None,
        profile: DeviceProfile | None = None,
        timeout: float | None = None,
        racer: FleetRacer | None = None,
        context: NetworkContext | None = None,
        canonical_host: str | None = None,
    ):
        from mediarelay.config import settings

        super().__init__(
            endpoints=endpoints if endpoints is not None else mirrors.innertube_endpoints(),
            timeout=timeout or settings.discovery_timeout,
            racer=racer,
            context=context,
        )
        self.helpers = tuple(helpers) if helpers is not None else mirrors.decipher_helpers()
        self.profile = profile or get_profile(settings.profile_order[0] if settings.profile_order else "ANDROID_VR")
        self.canonical_host = (canonical_host or settings.canonical_host).rstrip("/")

    async def probe(self, endpoint: MirrorEndpoint, content_id: str, kind: MediaKind) -> Candidate:
        client = InnertubeClient(
            host=endpoint.base_url,
            canonical_host=self.canonical_host,
            context=self.context,
            timeout=self.timeout,
        )
        payload = await client.player(content_id, self.profile)

        formats = [f for f in parse_formats(payload) if f.url or f.signature_cipher]
        chosen = select_format(formats, kind)
        if chosen is None:
            raise NoUsableStream(f"no {kind.tunnel_kind.value} format")

        url = chosen.url or await self.decipher(content_id, chosen.signature_cipher)
        return Candidate(
            source_url=url,
            title=video_title(payload, content_id),
            origin_backend=self.name,
            content_type=mime_essence(chosen.mime_type),
        )

    async def decipher(self, content_id: str, signature_cipher: str) -> str:
        """Ask the helpers in order until one returns a playable URL."""
        errors: list[str] = []
        for helper in self.helpers:
            try:
                data = await self._post_json(
                    f"{helper.rstrip('/')}/decipher",
                    {"video_id": content_id, "signature_cipher": signature_cipher},
                )
            except BackendError as exc:
                errors.append(f"{helper}: {exc.detail}")
                continue

            url = data.get("url")
            if url:
                logger.debug("Deciphered %s via %s", content_id, mask_url(helper))
                return url
            errors.append(f"{helper}: no url in response")

        raise NoUsableStream("decipher failed: " + ("; ".join(errors) or "no helpers configured"))
