# mediarelay/infra/backends/native_extractor.py
"""
Phase 1: in-process player API client.

Profiles are tried in configured order; the first one whose response carries
at least one format with a direct URL (and a selectable stream for the
requested kind) wins.  Cipher-only formats are ignored here, the server has
no deciphering step.
"""
from __future__ import annotations

from typing import Sequence

from mediarelay.core.domain import BackendName, Candidate, MediaKind
from mediarelay.core.errors import BackendError, NoUsableStream
from mediarelay.infra.backends.innertube import (
    DeviceProfile,
    InnertubeClient,
    get_profile,
    parse_formats,
    select_format,
    video_title,
)
from mediarelay.infra.backends.base import mime_essence
from mediarelay.infra.logging_config import get_logger
from mediarelay.infra.network_context import NetworkContext

logger = get_logger(__name__)


class NativeExtractor:
    name = BackendName.NATIVE

    def __init__(
        self,
        profiles: Sequence[DeviceProfile] | None = None,
        canonical_host: str | None = None,
        context: NetworkContext | None = None,
        timeout: float | None = None,
    ):
        from mediarelay.config import settings

        self.profiles = list(profiles) if profiles is not None else [
            get_profile(name) for name in settings.profile_order
        ]
        host = canonical_host or settings.canonical_host
        self.client = InnertubeClient(
            host=host,
            canonical_host=host,
            context=context,
            timeout=timeout or settings.native_timeout,
        )

    async def resolve(self, content_id: str, kind: MediaKind) -> Candidate:
        errors: list[str] = []

        for profile in self.profiles:
            try:
                payload = await self.client.player(content_id, profile)
            except BackendError as exc:
                errors.append(f"{profile.client_name}: {exc.detail}")
                continue

            candidate = self._select_candidate(payload, content_id, kind)
            if candidate is not None:
                logger.debug("Native extractor resolved %s via %s", content_id, profile.client_name)
                return candidate
            errors.append(f"{profile.client_name}: no direct {kind.tunnel_kind.value} format")

        raise NoUsableStream("; ".join(errors) or "no device profiles configured")

    def _select_candidate(self, payload: dict, content_id: str, kind: MediaKind) -> Candidate | None:
        direct = [f for f in parse_formats(payload) if f.url]
        if not direct:
            return None
        chosen = select_format(direct, kind)
        if chosen is None:
            return None
        return Candidate(
            source_url=chosen.url,
            title=video_title(payload, content_id),
            origin_backend=self.name,
            content_type=mime_essence(chosen.mime_type),
        )
