# mediarelay/infra/tunnel.py
"""
Stream tunnel: relays upstream media bytes to the caller.

The upstream URL is fetched through the shared ``tunnel`` aiohttp session and
its body is handed on chunk by chunk; nothing is buffered server-side.  The
caller always receives a downloadable response::

    Content-Type:        upstream value, else audio/mp4 | video/mp4
    Content-Disposition: attachment; filename="<sanitized title>.<m4a|mp4>"
    Content-Length:      upstream value, verbatim (omitted when unknown)
    Accept-Ranges:       bytes
    Cache-Control:       no-cache

``open()`` first tries a caller-supplied ``direct_url`` (phase 0) with
canonical-host headers, then falls back to the phase chain.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Optional
from urllib.parse import urlparse

import aiohttp

from mediarelay.core.domain import MediaKind, MediaRequest, build_filename
from mediarelay.core.errors import (
    InvalidUpstreamUrl,
    MissingIdentifier,
    StreamRelayFailure,
)
from mediarelay.core.phase_chain import PhaseChain
from mediarelay.infra.http_client import get_tunnel_session
from mediarelay.infra.logging_config import LogContext, get_logger, mask_url
from mediarelay.infra.metrics import RelayMetrics

logger = get_logger(__name__)

CHUNK_SIZE = 64 * 1024

DEFAULT_CONTENT_TYPES = {
    MediaKind.AUDIO: "audio/mp4",
    MediaKind.VIDEO: "video/mp4",
}

ProgressCallback = Callable[[int, Optional[int]], None]


@dataclass
class RelayedStream:
    """Response-ready relay: status, headers and a lazily consumed body."""
    status_code: int
    headers: dict[str, str]
    body: AsyncIterator[bytes]
    source: str = "chain"
    release: Optional[Callable[[], None]] = None

    @property
    def content_length(self) -> Optional[int]:
        value = self.headers.get("Content-Length")
        return int(value) if value else None

    async def aclose(self) -> None:
        """Close the body and free the upstream connection, consumed or not."""
        aclose = getattr(self.body, "aclose", None)
        if aclose is not None:
            await aclose()
        if self.release is not None:
            self.release()


@dataclass
class BufferedBody:
    data: bytes
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def content_type(self) -> Optional[str]:
        return self.headers.get("Content-Type")


def relay_headers(
    kind: MediaKind,
    title: str,
    upstream_headers,
    content_type: str | None = None,
) -> dict[str, str]:
    kind = kind.tunnel_kind
    headers = {
        "Content-Type": upstream_headers.get("Content-Type") or content_type or DEFAULT_CONTENT_TYPES[kind],
        "Content-Disposition": f'attachment; filename="{build_filename(title, kind)}"',
        "Accept-Ranges": "bytes",
        "Cache-Control": "no-cache",
    }
    length = upstream_headers.get("Content-Length")
    if length:
        headers["Content-Length"] = length
    return headers


def validate_proxy_target(url: str | None) -> str:
    """Only absolute http(s) URLs may be relayed."""
    if not url:
        raise InvalidUpstreamUrl("Missing url")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidUpstreamUrl("Invalid url")
    return url


class StreamTunnel:
    def __init__(
        self,
        chain: PhaseChain | None = None,
        session_factory: Callable[[], aiohttp.ClientSession] = get_tunnel_session,
        canonical_host: str | None = None,
        user_agent: str | None = None,
        discovery_timeout: float | None = None,
        chunk_size: int = CHUNK_SIZE,
    ):
        from mediarelay.config import settings

        self.chain = chain
        self.session_factory = session_factory
        self.canonical_host = (canonical_host or settings.canonical_host).rstrip("/")
        self.user_agent = user_agent or settings.user_agent
        self.discovery_timeout = discovery_timeout or settings.discovery_timeout
        self.tunnel_timeout = settings.tunnel_timeout
        self.chunk_size = chunk_size

    def canonical_headers(self) -> dict[str, str]:
        """Headers that make a phase-0 fetch look like it came from the canonical player."""
        return {
            "User-Agent": self.user_agent,
            "Origin": self.canonical_host,
            "Referer": f"{self.canonical_host}/",
            "Range": "bytes=0-",
            "Connection": "keep-alive",
        }

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def open(self, request: MediaRequest) -> RelayedStream:
        """
        Relay bytes for ``request``.

        Raises:
            MissingIdentifier: no id and no (working) direct URL.
            ExtractionExhausted: every phase of the chain failed.
            StreamRelayFailure: the resolved URL could not be fetched.
        """
        log = LogContext(logger, content_id=request.content_id or None, phase="P0")
        title = request.title or request.content_id or "download"

        if request.direct_url:
            try:
                stream = await self.relay(
                    request.direct_url,
                    request.kind,
                    title,
                    headers=self.canonical_headers(),
                    source="direct",
                    connect_timeout=self.discovery_timeout,
                )
                log.info(f"Phase 0 direct URL accepted ({mask_url(request.direct_url)})")
                return stream
            except StreamRelayFailure as exc:
                log.warning(f"Phase 0 direct URL rejected, falling back to chain: {exc.detail}")

        if not request.content_id:
            raise MissingIdentifier()
        if self.chain is None:
            raise StreamRelayFailure("No resolver configured")

        candidate = await self.chain.resolve(request.content_id, request.kind.tunnel_kind)
        return await self.relay(
            candidate.source_url,
            request.kind,
            candidate.title,
            content_type=candidate.content_type,
            source=candidate.origin_backend.value,
        )

    async def relay(
        self,
        url: str,
        kind: MediaKind,
        title: str,
        content_type: str | None = None,
        headers: dict[str, str] | None = None,
        source: str = "chain",
        connect_timeout: float | None = None,
    ) -> RelayedStream:
        """Fetch ``url`` and return a streaming relay with download headers."""
        resp = await self._fetch(url, headers=headers, connect_timeout=connect_timeout)
        try:
            headers_out = relay_headers(kind, title, resp.headers, content_type)
        except Exception:
            resp.release()
            raise
        RelayMetrics.tunnel_opened(source)
        logger.debug("Relaying %s from %s (status=%s)", kind.tunnel_kind.value, mask_url(url), resp.status)
        # A 206 answer to "Range: bytes=0-" is the whole body.
        return RelayedStream(
            status_code=200,
            headers=headers_out,
            body=self._iterate(resp),
            source=source,
            release=resp.release,
        )

    async def relay_buffered(
        self,
        url: str,
        on_progress: ProgressCallback | None = None,
        headers: dict[str, str] | None = None,
    ) -> BufferedBody:
        """
        Download ``url`` fully, reporting ``(bytes_read, total_bytes)`` per chunk.

        ``total_bytes`` is ``None`` when the upstream sent no Content-Length.
        """
        resp = await self._fetch(url, headers=headers)
        total = int(resp.headers.get("Content-Length") or 0) or None
        buffer = bytearray()
        try:
            async for chunk in resp.content.iter_chunked(self.chunk_size):
                buffer.extend(chunk)
                if on_progress is not None:
                    on_progress(len(buffer), total)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            RelayMetrics.tunnel_failed()
            raise StreamRelayFailure(f"Upstream stream interrupted: {exc.__class__.__name__}") from exc
        finally:
            resp.release()
        RelayMetrics.tunnel_bytes(len(buffer))
        return BufferedBody(data=bytes(buffer), headers=dict(resp.headers))

    async def proxy(self, url: str | None, method: str = "GET", body: bytes | None = None) -> RelayedStream:
        """
        Same-origin relay of an arbitrary http(s) URL.

        Upstream status and body are passed through unchanged so the caller
        can judge the answer itself.
        """
        target = validate_proxy_target(url)
        extra: dict = {}
        if body:
            extra["data"] = body
            extra["headers"] = {"Content-Type": "application/json", "User-Agent": self.user_agent}
        resp = await self._fetch(target, method=method, accept_any_status=True, **extra)
        RelayMetrics.tunnel_opened("proxy")

        headers = {
            "Content-Type": resp.headers.get("Content-Type") or "application/octet-stream",
            "Access-Control-Allow-Origin": "*",
            "Cache-Control": "no-cache",
        }
        length = resp.headers.get("Content-Length")
        if length:
            headers["Content-Length"] = length
        return RelayedStream(
            status_code=resp.status,
            headers=headers,
            body=self._iterate(resp),
            source="proxy",
            release=resp.release,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _fetch(
        self,
        url: str,
        method: str = "GET",
        headers: dict[str, str] | None = None,
        connect_timeout: float | None = None,
        accept_any_status: bool = False,
        data: bytes | None = None,
    ) -> aiohttp.ClientResponse:
        session = self.session_factory()
        kwargs: dict = {"headers": headers or {"User-Agent": self.user_agent}}
        if data is not None:
            kwargs["data"] = data
        if connect_timeout is not None:
            kwargs["timeout"] = aiohttp.ClientTimeout(
                total=None, connect=connect_timeout, sock_read=self.tunnel_timeout,
            )

        try:
            resp = await session.request(method, url, **kwargs)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            RelayMetrics.tunnel_failed()
            raise StreamRelayFailure(
                f"Upstream fetch failed: {str(exc) or exc.__class__.__name__}"
            ) from exc

        if not accept_any_status and resp.status not in (200, 206):
            resp.release()
            RelayMetrics.tunnel_failed()
            raise StreamRelayFailure(f"Upstream returned HTTP {resp.status}")
        return resp

    async def _iterate(self, resp: aiohttp.ClientResponse) -> AsyncIterator[bytes]:
        sent = 0
        try:
            async for chunk in resp.content.iter_chunked(self.chunk_size):
                sent += len(chunk)
                yield chunk
        finally:
            resp.release()
            RelayMetrics.tunnel_bytes(sent)
