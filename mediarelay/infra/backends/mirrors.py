# mediarelay/infra/backends/mirrors.py
"""
Mirror endpoint tables.

Built-in tables are immutable tuples.  A non-empty comma-separated override in
settings replaces the matching table; overrides are read once on first use.
The client tables are supersets of the server ones (the caller's network
reaches more of the fleet than a datacenter IP does).
"""
from __future__ import annotations

from functools import lru_cache

from mediarelay.core.domain import BackendClass, MirrorEndpoint

PIPED_SERVER: tuple[str, ...] = (
    "https://pipedapi.kavin.rocks",
    "https://pipedapi.adminforge.de",
    "https://pipedapi.leptons.xyz",
    "https://piped-api.lunar.icu",
    "https://pipedapi.mha.fi",
    "https://pipedapi.garudalinux.org",
    "https://api.piped.yt",
)

PIPED_CLIENT: tuple[str, ...] = PIPED_SERVER + (
    "https://pipedapi.r4fo.com",
    "https://pipedapi.colinslegacy.com",
    "https://pipedapi.rivo.lol",
    "https://pipedapi.smnz.de",
    "https://pipedapi.ducks.party",
)

INVIDIOUS_SERVER: tuple[str, ...] = (
    "https://inv.nadeko.net",
    "https://invidious.nerdvpn.de",
    "https://yewtu.be",
    "https://iv.melmac.space",
)

INVIDIOUS_CLIENT: tuple[str, ...] = INVIDIOUS_SERVER + (
    "https://invidious.privacyredirect.com",
    "https://invidious.jing.rocks",
    "https://inv.tux.pizza",
)

INNERTUBE_HOSTS: tuple[str, ...] = (
    "https://www.youtube.com",
    "https://youtubei.googleapis.com",
    "https://m.youtube.com",
)

# No public helper is bundled; configure DECIPHER_HELPERS to enable the round-trip.
DECIPHER_HELPERS: tuple[str, ...] = ()


def _split(raw: str) -> tuple[str, ...]:
    return tuple(part.strip().rstrip("/") for part in raw.split(",") if part.strip())


@lru_cache(maxsize=None)
def _overrides() -> dict[str, tuple[str, ...]]:
    from mediarelay.config import settings

    return {
        "piped": _split(settings.piped_endpoints),
        "invidious": _split(settings.invidious_endpoints),
        "innertube": _split(settings.innertube_hosts),
        "decipher": _split(settings.decipher_helpers),
    }


def _table(key: str, builtin: tuple[str, ...]) -> tuple[str, ...]:
    return _overrides()[key] or builtin


def piped_endpoints(client: bool = False) -> tuple[MirrorEndpoint, ...]:
    urls = _table("piped", PIPED_CLIENT if client else PIPED_SERVER)
    return tuple(MirrorEndpoint(u, BackendClass.PIPED) for u in urls)


def invidious_endpoints(client: bool = False) -> tuple[MirrorEndpoint, ...]:
    urls = _table("invidious", INVIDIOUS_CLIENT if client else INVIDIOUS_SERVER)
    return tuple(MirrorEndpoint(u, BackendClass.INVIDIOUS) for u in urls)


def innertube_endpoints() -> tuple[MirrorEndpoint, ...]:
    return tuple(MirrorEndpoint(u, BackendClass.INNERTUBE) for u in _table("innertube", INNERTUBE_HOSTS))


def decipher_helpers() -> tuple[str, ...]:
    return _table("decipher", DECIPHER_HELPERS)


def reload_overrides() -> None:
    """Forget cached overrides (tests change settings between cases)."""
    _overrides.cache_clear()
