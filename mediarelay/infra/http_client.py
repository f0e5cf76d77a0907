# mediarelay/infra/http_client.py
"""
Shared HTTP client sessions for the application.

Provides named, lazy-initialized aiohttp.ClientSession singletons
to avoid per-request session creation overhead and TCP connection churn.

Session profiles
~~~~~~~~~~~~~~~~
- **mirror**  – discovery calls to mirror fleets and the canonical player API
  (total=15 s, connect=5 s, pool limit=32; per-call timeouts are tighter)
- **tunnel**  – upstream media fetches relayed to callers
  (no total cap, connect=10 s, sock_read=30 s, pool limit=16)
- **client**  – caller-side probe and acquisition downloads
  (no total cap, connect=5 s, sock_read=30 s, pool limit=16)

Shutdown
~~~~~~~~
Call ``close_all_sessions()`` once during application shutdown.
"""
from __future__ import annotations

import aiohttp

from mediarelay.infra.logging_config import get_logger

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Internal state
# ---------------------------------------------------------------------------

_sessions: dict[str, aiohttp.ClientSession] = {}


def _get_or_create(
    name: str,
    timeout: aiohttp.ClientTimeout,
    limit: int = 10,
) -> aiohttp.ClientSession:
    """Return an existing session or create a new one."""
    session = _sessions.get(name)
    if session is None or session.closed:
        session = aiohttp.ClientSession(
            timeout=timeout,
            connector=aiohttp.TCPConnector(
                keepalive_timeout=30,
                limit=limit,
                enable_cleanup_closed=True,
            ),
        )
        _sessions[name] = session
        logger.debug("HTTP session '%s' created (limit=%d)", name, limit)
    return session


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def get_mirror_session() -> aiohttp.ClientSession:
    """Session for discovery calls (mirror fleets, player API)."""
    return _get_or_create(
        "mirror",
        aiohttp.ClientTimeout(total=15, connect=5),
        limit=32,
    )


def get_tunnel_session() -> aiohttp.ClientSession:
    """Session for relayed media bodies. Long downloads must not hit a total cap."""
    from mediarelay.config import settings

    return _get_or_create(
        "tunnel",
        aiohttp.ClientTimeout(total=None, connect=10, sock_read=settings.tunnel_timeout),
        limit=16,
    )


def get_client_session() -> aiohttp.ClientSession:
    """Caller-side session (client probe, acquisition downloads). Per-call timeouts apply."""
    return _get_or_create(
        "client",
        aiohttp.ClientTimeout(total=None, connect=5, sock_read=30),
        limit=16,
    )


async def close_all_sessions() -> None:
    """Gracefully close every managed session.  Call during app shutdown."""
    for name in list(_sessions):
        session = _sessions.pop(name, None)
        if session is not None and not session.closed:
            await session.close()
            logger.debug("HTTP session '%s' closed", name)
