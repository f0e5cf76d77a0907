# mediarelay/infra/network_context.py
"""
Network context shared by every backend adapter.

The same adapters resolve ids from two places: the server (its own outbound
IP) and the caller's machine (client-side probe).  What differs is only the
plumbing: which aiohttp session is used, whether requests go through an
outbound proxy, and whether target URLs are wrapped through the server's
same-origin relay (``/api/download?action=proxy&url=...``).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable
from urllib.parse import quote

import aiohttp

from mediarelay.infra.http_client import get_mirror_session


@dataclass(frozen=True)
class NetworkContext:
    name: str
    session_factory: Callable[[], aiohttp.ClientSession]
    user_agent: str
    proxy: str | None = None
    relay_base: str | None = None

    def wrap(self, url: str) -> str:
        """Route ``url`` through the same-origin relay when one is configured."""
        if not self.relay_base:
            return url
        return f"{self.relay_base}?action=proxy&url={quote(url, safe='')}"

    def _kwargs(self, headers: dict[str, str] | None, extra: dict[str, Any]) -> dict[str, Any]:
        merged = {"User-Agent": self.user_agent}
        if headers:
            merged.update(headers)
        kwargs = {"headers": merged, **extra}
        if self.proxy:
            kwargs["proxy"] = self.proxy
        return kwargs

    def get(self, url: str, headers: dict[str, str] | None = None, **extra: Any):
        """``session.get`` returning the aiohttp request context manager."""
        session = self.session_factory()
        return session.get(self.wrap(url), **self._kwargs(headers, extra))

    def post(self, url: str, headers: dict[str, str] | None = None, **extra: Any):
        session = self.session_factory()
        return session.post(self.wrap(url), **self._kwargs(headers, extra))


def server_context() -> NetworkContext:
    """Context for resolution running on the server's own network."""
    from mediarelay.config import settings

    return NetworkContext(
        name="server",
        session_factory=get_mirror_session,
        user_agent=settings.user_agent,
    )
