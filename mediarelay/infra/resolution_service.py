# mediarelay/infra/resolution_service.py
"""
Server-side resolution service.

Wires the four server adapters into a ``PhaseChain`` and exposes the three
things the download endpoint needs: probe-mode URL discovery, single-URL
lookup and a tunnel.  Nothing is cached between calls.
"""
from __future__ import annotations

import asyncio
from typing import Any, Optional

from mediarelay.core.domain import MediaKind, MediaRequest, build_filename
from mediarelay.core.errors import ExtractionExhausted
from mediarelay.core.phase_chain import PhaseChain
from mediarelay.infra.backends import InvidiousFleet, LibraryExtractor, NativeExtractor, PipedFleet
from mediarelay.infra.logging_config import LogContext, get_logger
from mediarelay.infra.network_context import NetworkContext, server_context
from mediarelay.infra.tunnel import RelayedStream, StreamTunnel

logger = get_logger(__name__)


def build_server_chain(context: NetworkContext | None = None) -> PhaseChain:
    """P1 native, P2 library, P3 mirror fleet A, P4 mirror fleet B."""
    ctx = context or server_context()
    return PhaseChain([
        NativeExtractor(context=ctx),
        LibraryExtractor(context=ctx),
        PipedFleet(context=ctx),
        InvidiousFleet(context=ctx),
    ])


class ResolutionService:
    def __init__(self, chain: PhaseChain | None = None, tunnel: StreamTunnel | None = None):
        from mediarelay.config import settings

        self.settings = settings
        self.chain = chain or build_server_chain()
        self.tunnel = tunnel or StreamTunnel(chain=self.chain)

    async def probe(self, content_id: str, kind: MediaKind) -> dict[str, Any]:
        """
        Discover URLs without relaying bytes.

        Each concrete kind is resolved independently; a kind whose chain is
        exhausted comes back as ``None``.  ``status`` is ``ready`` as soon as
        one kind resolved.
        """
        log = LogContext(logger, content_id=content_id)
        kinds = kind.concrete_kinds
        outcomes = await asyncio.gather(
            *(self._probe_one(content_id, k) for k in kinds)
        )
        found: dict[MediaKind, Optional[dict[str, str]]] = dict(zip(kinds, outcomes))

        response = {
            "audio": found.get(MediaKind.AUDIO),
            "video": found.get(MediaKind.VIDEO),
            "fallbackUrl": self.settings.fallback_url_for(content_id),
            "status": "ready" if any(found.values()) else "fallback_required",
        }
        log.info(f"Probe finished: status={response['status']}")
        return response

    async def _probe_one(self, content_id: str, kind: MediaKind) -> Optional[dict[str, str]]:
        try:
            candidate = await self.chain.resolve(content_id, kind)
        except ExtractionExhausted as exc:
            LogContext(logger, content_id=content_id).warning(f"{kind.value}: {exc.detail}")
            return None
        return {"url": candidate.source_url, "filename": build_filename(candidate.title, kind)}

    async def get_url(self, content_id: str, kind: MediaKind) -> dict[str, str]:
        """Resolve one URL for tunnel-less use. Raises ``ExtractionExhausted``."""
        tunnel_kind = kind.tunnel_kind
        candidate = await self.chain.resolve(content_id, tunnel_kind)
        return {
            "url": candidate.source_url,
            "title": candidate.title,
            "filename": build_filename(candidate.title, tunnel_kind),
        }

    async def open_stream(self, request: MediaRequest) -> RelayedStream:
        return await self.tunnel.open(request)

    async def proxy(self, url: str | None, method: str = "GET", body: bytes | None = None) -> RelayedStream:
        return await self.tunnel.proxy(url, method=method, body=body)
