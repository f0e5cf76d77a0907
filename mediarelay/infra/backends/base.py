# mediarelay/infra/backends/base.py
"""
Shared plumbing for backend adapters.

Adapters only differ in the upstream contract they speak and in how they
normalise its payload into a ``Candidate``.  HTTP access, JSON decoding and
the mapping of transport failures onto ``BackendError`` subclasses live here.
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Iterable, Optional, Sequence, TypeVar

import aiohttp

from mediarelay.core.domain import BackendName
from mediarelay.core.errors import BackendTimeout, MirrorUnreachable
from mediarelay.infra.logging_config import get_logger, mask_url
from mediarelay.infra.network_context import NetworkContext, server_context

logger = get_logger(__name__)

T = TypeVar("T")


def pick_preferred(items: Iterable[T], predicates: Sequence[Callable[[T], bool]]) -> Optional[T]:
    """
    First item matching the earliest predicate.

    Predicates are tried in order of preference; within one predicate the
    input order wins, so callers sort ``items`` first when order matters.
    """
    pool = list(items)
    for predicate in predicates:
        for item in pool:
            if predicate(item):
                return item
    return None


def mime_essence(mime: str | None) -> str | None:
    """``'audio/mp4; codecs="mp4a.40.2"'`` -> ``'audio/mp4'``"""
    if not mime:
        return None
    return mime.split(";", 1)[0].strip() or None


class BaseBackend:
    """
    Base class for adapters talking JSON over HTTP.

    Subclasses set ``name`` and implement ``resolve(content_id, kind)``.
    """

    name: BackendName

    def __init__(self, context: NetworkContext | None = None, timeout: float = 10.0):
        self.context = context or server_context()
        self.timeout = timeout

    def _client_timeout(self, timeout: float | None) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=timeout or self.timeout)

    async def _get_json(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        try:
            async with self.context.get(url, headers=headers, timeout=self._client_timeout(timeout)) as resp:
                return await self._read_json(resp, url)
        except asyncio.TimeoutError as exc:
            raise BackendTimeout(f"timeout after {timeout or self.timeout}s") from exc
        except aiohttp.ClientError as exc:
            raise MirrorUnreachable(str(exc) or exc.__class__.__name__) from exc

    async def _post_json(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        try:
            async with self.context.post(
                url,
                headers=headers,
                json=payload,
                timeout=self._client_timeout(timeout),
            ) as resp:
                return await self._read_json(resp, url)
        except asyncio.TimeoutError as exc:
            raise BackendTimeout(f"timeout after {timeout or self.timeout}s") from exc
        except aiohttp.ClientError as exc:
            raise MirrorUnreachable(str(exc) or exc.__class__.__name__) from exc

    @staticmethod
    async def _read_json(resp, url: str) -> dict[str, Any]:
        if resp.status != 200:
            logger.debug("%s returned HTTP %s", mask_url(url), resp.status)
            raise MirrorUnreachable(f"HTTP {resp.status}")
        try:
            data = await resp.json(content_type=None)
        except ValueError as exc:
            raise MirrorUnreachable("invalid JSON") from exc
        if not isinstance(data, dict):
            raise MirrorUnreachable("unexpected payload")
        return data
