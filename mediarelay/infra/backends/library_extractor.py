# mediarelay/infra/backends/library_extractor.py
"""
Phase 2: yt-dlp metadata extraction.

One ``extract_info(download=False)`` call per request, executed in a worker
thread so the event loop keeps serving.  The thread cannot be interrupted;
on timeout its result is simply dropped.
"""
from __future__ import annotations

import asyncio
from typing import Any, Optional

from yt_dlp import YoutubeDL
from yt_dlp.utils import DownloadError

from mediarelay.core.domain import BackendName, Candidate, MediaKind
from mediarelay.core.errors import BackendError, BackendTimeout, NoUsableStream
from mediarelay.infra.logging_config import get_logger
from mediarelay.infra.network_context import NetworkContext

logger = get_logger(__name__)

_HTTP_PROTOCOLS = {"http", "https"}

_CONTENT_TYPES = {
    ("audio", "m4a"): "audio/mp4",
    ("audio", "mp4"): "audio/mp4",
    ("audio", "webm"): "audio/webm",
    ("video", "mp4"): "video/mp4",
    ("video", "webm"): "video/webm",
}


def _has(codec: Any) -> bool:
    return bool(codec) and codec != "none"


def select_library_format(formats: list[dict[str, Any]], kind: MediaKind) -> Optional[dict[str, Any]]:
    """
    Audio: highest-bitrate audio-only format.
    Video: best muxed format, else best video-only format.

    Only plain http(s) formats qualify; manifests cannot be relayed as one body.
    """
    usable = [
        f for f in formats
        if f.get("url") and (f.get("protocol") or "https") in _HTTP_PROTOCOLS
    ]

    if kind.tunnel_kind is MediaKind.AUDIO:
        audio = [f for f in usable if _has(f.get("acodec")) and not _has(f.get("vcodec"))]
        return max(audio, key=lambda f: f.get("abr") or f.get("tbr") or 0, default=None)

    muxed = [f for f in usable if _has(f.get("acodec")) and _has(f.get("vcodec"))]
    if muxed:
        return max(muxed, key=lambda f: (f.get("height") or 0, f.get("tbr") or 0))
    video_only = [f for f in usable if _has(f.get("vcodec")) and not _has(f.get("acodec"))]
    return max(video_only, key=lambda f: (f.get("height") or 0, f.get("tbr") or 0), default=None)


class LibraryExtractor:
    name = BackendName.LIBRARY

    def __init__(
        self,
        canonical_host: str | None = None,
        context: NetworkContext | None = None,
        timeout: float | None = None,
    ):
        from mediarelay.config import settings

        self.canonical_host = (canonical_host or settings.canonical_host).rstrip("/")
        self.timeout = timeout or settings.library_timeout
        self.proxy = context.proxy if context else None

    def _options(self) -> dict[str, Any]:
        opts: dict[str, Any] = {
            "quiet": True,
            "no_warnings": True,
            "skip_download": True,
            "noplaylist": True,
            "cachedir": False,
            "socket_timeout": int(self.timeout),
        }
        if self.proxy:
            opts["proxy"] = self.proxy
        return opts

    def _extract(self, url: str) -> dict[str, Any]:
        with YoutubeDL(self._options()) as ydl:
            info = ydl.extract_info(url, download=False)
        if not isinstance(info, dict):
            raise NoUsableStream("extractor returned no metadata")
        return info

    async def resolve(self, content_id: str, kind: MediaKind) -> Candidate:
        url = f"{self.canonical_host}/watch?v={content_id}"
        try:
            info = await asyncio.wait_for(asyncio.to_thread(self._extract, url), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise BackendTimeout(f"timeout after {self.timeout}s") from exc
        except DownloadError as exc:
            raise BackendError(str(exc)) from exc

        chosen = select_library_format(info.get("formats") or [], kind)
        if chosen is None:
            raise NoUsableStream(f"no {kind.tunnel_kind.value} format")

        logger.debug("Library extractor picked format %s for %s", chosen.get("format_id"), content_id)
        return Candidate(
            source_url=chosen["url"],
            title=info.get("title") or content_id,
            origin_backend=self.name,
            content_type=_CONTENT_TYPES.get((kind.tunnel_kind.value, chosen.get("ext"))),
        )
