# mediarelay/client/acquisition.py
"""
Acquisition controller: one end-to-end attempt per user request.

    probing    client probe per kind (caller's network)
    scanning   server lookup (GET /api/download?get_url=true) for kinds the probe missed
    tunneling  bytes fetched through the server tunnel, the found URL passed as
               ``direct_url`` so the server tries it first
    ready      at least one kind downloaded
    fallback   nothing worked; the session carries the external link

A new ``start()`` supersedes the running flow: its task is cancelled and the
session generation is bumped, so late events from the old flow are ignored.
"""
from __future__ import annotations

import asyncio
import re
from typing import Callable, Optional
from urllib.parse import urlencode

import aiohttp

from mediarelay.client.probe import ClientProbe, client_context
from mediarelay.core.domain import MediaKind, build_filename
from mediarelay.core.errors import StreamRelayFailure
from mediarelay.core.session import AcquiredMedia, AcquisitionSession
from mediarelay.infra.http_client import get_client_session
from mediarelay.infra.logging_config import LogContext, get_logger
from mediarelay.infra.tunnel import DEFAULT_CONTENT_TYPES, StreamTunnel

logger = get_logger(__name__)

_FILENAME_RE = re.compile(r'filename="([^"]+)"')


def filename_from_disposition(header: str | None) -> Optional[str]:
    if not header:
        return None
    match = _FILENAME_RE.search(header)
    return match.group(1) if match else None


class AcquisitionController:
    def __init__(
        self,
        server_base: str,
        session: AcquisitionSession | None = None,
        probe: ClientProbe | None = None,
        tunnel: StreamTunnel | None = None,
        session_factory: Callable[[], aiohttp.ClientSession] = get_client_session,
        use_relay: bool = False,
        relay_base: str | None = None,
        lookup_timeout: float = 55.0,
    ):
        from mediarelay.config import settings

        self.settings = settings
        self.server_base = server_base.rstrip("/")
        self.endpoint = f"{self.server_base}/api/download"
        self.session = session or AcquisitionSession()
        self.session_factory = session_factory
        self.probe = probe or ClientProbe(
            context=client_context(
                session_factory=session_factory,
                relay_base=relay_base or (self.endpoint if use_relay else None),
            )
        )
        self.tunnel = tunnel or StreamTunnel(session_factory=session_factory)
        self.lookup_timeout = lookup_timeout
        self._task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self, content_id: str, kind: MediaKind = MediaKind.AUDIO) -> asyncio.Task:
        """Cancel any running flow and launch a new one."""
        if self._task is not None and not self._task.done():
            logger.info("Superseding running acquisition for %s", self.session.content_id)
            self._task.cancel()
        self._task = asyncio.create_task(self.acquire(content_id, kind))
        return self._task

    async def acquire(self, content_id: str, kind: MediaKind = MediaKind.AUDIO) -> AcquisitionSession:
        generation = self.session.reset(content_id)
        log = LogContext(logger, content_id=content_id)
        try:
            await self._run(generation, content_id, kind, log)
        except asyncio.CancelledError:
            log.info(f"Acquisition generation {generation} cancelled")
            raise
        return self.session

    # ------------------------------------------------------------------
    # Flow
    # ------------------------------------------------------------------

    async def _run(self, generation: int, content_id: str, kind: MediaKind, log: LogContext) -> None:
        session = self.session
        fallback_url = self.settings.fallback_url_for(content_id)
        kinds = kind.concrete_kinds

        if not session.begin_probe(generation):
            return
        # kind -> (source url, title)
        urls: dict[MediaKind, tuple[str, Optional[str]]] = {}
        for k in kinds:
            report = await self.probe.probe(content_id, k)
            if report.candidate is not None:
                urls[k] = (report.candidate.source_url, report.candidate.title)

        missing = [k for k in kinds if k not in urls]
        if missing:
            if not session.begin_scan(generation):
                return
            for k in missing:
                found = await self._server_lookup(content_id, k, log)
                if found:
                    urls[k] = found

        if not urls:
            session.fail(generation, fallback_url, "No source found")
            log.warning("No source found, falling back to external link")
            return

        if not session.begin_tunnel(generation):
            return

        ordered = [k for k in kinds if k in urls]
        errors: list[str] = []
        for index, k in enumerate(ordered):
            source_url, title = urls[k]
            media = await self._download(
                generation, content_id, k, source_url, title, index, len(ordered), errors
            )
            if media is not None:
                session.store_result(generation, media)

        if not session.is_current(generation):
            return
        if session.results:
            session.complete(generation)
            log.info(f"Acquisition ready: {[k.value for k in session.results]}")
        else:
            session.fail(generation, fallback_url, "; ".join(errors) or "Tunnel failed")
            log.warning(f"Tunnel failed for every kind: {errors}")

    async def _server_lookup(
        self, content_id: str, kind: MediaKind, log: LogContext
    ) -> Optional[tuple[str, Optional[str]]]:
        """Server-side phase chain via ``get_url``. Any failure is a miss."""
        url = f"{self.endpoint}?{urlencode({'id': content_id, 'type': kind.value, 'get_url': 'true'})}"
        try:
            async with self.session_factory().get(
                url, timeout=aiohttp.ClientTimeout(total=self.lookup_timeout)
            ) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    log.info(f"Server lookup for {kind.value} answered {resp.status}: {text[:100]}")
                    return None
                data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            log.info(f"Server lookup for {kind.value} failed: {exc.__class__.__name__}")
            return None
        url = data.get("url")
        if not url:
            return None
        return url, data.get("title") or None

    async def _download(
        self,
        generation: int,
        content_id: str,
        kind: MediaKind,
        source_url: str,
        title: Optional[str],
        index: int,
        count: int,
        errors: list[str],
    ) -> Optional[AcquiredMedia]:
        params = {"id": content_id, "type": kind.value, "pipe": "true", "direct_url": source_url}
        if title:
            params["title"] = title
        tunnel_url = f"{self.endpoint}?{urlencode(params)}"

        def on_progress(read: int, total: Optional[int]) -> None:
            fraction = (read / total) if total else 0.0
            self.session.update_progress(generation, (index + min(fraction, 1.0)) / count * 100)

        try:
            body = await self.tunnel.relay_buffered(tunnel_url, on_progress=on_progress)
        except StreamRelayFailure as exc:
            errors.append(f"{kind.value}: {exc.detail}")
            return None

        filename = (
            filename_from_disposition(body.headers.get("Content-Disposition"))
            or build_filename(title or content_id, kind)
        )
        return AcquiredMedia(
            kind=kind,
            filename=filename,
            content_type=body.content_type or DEFAULT_CONTENT_TYPES[kind],
            data=body.data,
            source_url=source_url,
        )
