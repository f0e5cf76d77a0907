# mediarelay/transport/download.py
"""
``/api/download`` handler.

    action=proxy&url=...           same-origin relay of an arbitrary http(s) URL
    pipe=true  (+ direct_url)      tunnel bytes, phase 0 first when direct_url given
    get_url=true                   resolve one URL, return {url, title, filename}
    (neither)                      probe: discover audio/video URLs, no bytes

Pipeline errors propagate as ``MediaRelayError`` and are rendered by the
app-level exception handler.
"""
from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from mediarelay.core.domain import RequestMode
from mediarelay.infra.logging_config import LogContext, get_logger, mask_url
from mediarelay.infra.resolution_service import ResolutionService
from mediarelay.infra.tunnel import RelayedStream
from mediarelay.transport.adapters import parse_download_query
from mediarelay.transport.schemas import ProbeOut, UrlOut

logger = get_logger(__name__)


class RelayResponse(StreamingResponse):
    """Streams a ``RelayedStream``; the upstream is released however the send ends."""

    def __init__(self, stream: RelayedStream):
        super().__init__(stream.body, status_code=stream.status_code, headers=stream.headers)
        self.stream = stream

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.stream.aclose()


async def download_handler(request: Request, service: ResolutionService) -> Response:
    query = parse_download_query(request.query_params)
    log = LogContext(
        logger,
        request_id=getattr(request.state, "request_id", None),
        content_id=query.content_id,
    )

    if query.is_proxy:
        body = await request.body() if request.method == "POST" else None
        log.debug(f"Proxy relay to {mask_url(query.url or '')}")
        stream = await service.proxy(query.url, method=request.method, body=body or None)
        return RelayResponse(stream)

    if query.mode is RequestMode.PROBE:
        content_id = query.require_id()
        result = await service.probe(content_id, query.kind)
        return JSONResponse(ProbeOut(**result).model_dump())

    if query.get_url:
        content_id = query.require_id()
        result = await service.get_url(content_id, query.kind)
        return JSONResponse(UrlOut(**result).model_dump())

    stream = await service.open_stream(query.to_media_request())
    log.info(f"Tunnel opened via {stream.source} (length={stream.content_length})")
    return RelayResponse(stream)
