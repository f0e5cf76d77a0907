# tests/conftest.py
"""Pytest configuration and fixtures"""
import asyncio
import pytest
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from mediarelay.core.domain import BackendName, Candidate, MediaKind  # noqa: E402
from mediarelay.infra.metrics import get_metrics_collector  # noqa: E402
from mediarelay.infra.network_context import NetworkContext  # noqa: E402


# ============================================================================
# aiohttp mocks
# ============================================================================

def make_json_response(status=200, json_data=None):
    """Mock aiohttp response for JSON endpoints."""
    resp = AsyncMock()
    resp.status = status
    resp.json = AsyncMock(return_value=json_data if json_data is not None else {})
    resp.text = AsyncMock(return_value="")
    return resp


def as_context(response=None, error=None):
    """Async context manager yielding ``response`` or raising ``error``."""
    ctx = AsyncMock()
    if error is not None:
        ctx.__aenter__ = AsyncMock(side_effect=error)
    else:
        ctx.__aenter__ = AsyncMock(return_value=response)
    ctx.__aexit__ = AsyncMock(return_value=False)
    return ctx


def make_routed_session(routes):
    """
    Session whose get/post pick a response by URL substring.

    ``routes`` maps a substring to ``(status, json)`` or to an exception.
    Unmatched URLs answer 404.
    """
    def _dispatch(url, **kwargs):
        for needle, outcome in routes.items():
            if needle in url:
                if isinstance(outcome, BaseException):
                    return as_context(error=outcome)
                status, payload = outcome
                return as_context(make_json_response(status, payload))
        return as_context(make_json_response(404, {}))

    session = MagicMock()
    session.get = MagicMock(side_effect=_dispatch)
    session.post = MagicMock(side_effect=_dispatch)
    return session


def make_context(session, proxy=None, relay_base=None):
    return NetworkContext(
        name="test",
        session_factory=lambda: session,
        user_agent="test-agent",
        proxy=proxy,
        relay_base=relay_base,
    )


class FakeContent:
    def __init__(self, chunks, error=None):
        self._chunks = list(chunks)
        self._error = error

    async def iter_chunked(self, size):
        for chunk in self._chunks:
            yield chunk
        if self._error is not None:
            raise self._error


class FakeStreamResponse:
    """Stand-in for ``aiohttp.ClientResponse`` with a chunked body."""

    def __init__(self, status=200, headers=None, chunks=(), error=None):
        self.status = status
        self.headers = dict(headers or {})
        self.content = FakeContent(chunks, error)
        self.released = False

    def release(self):
        self.released = True


class FakeTunnelSession:
    """
    Session for ``StreamTunnel``: ``request()`` answers by URL substring.

    Each route is a ``FakeStreamResponse`` or an exception; calls are recorded.
    """

    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    async def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        for needle, outcome in self.routes.items():
            if needle in url:
                if isinstance(outcome, BaseException):
                    raise outcome
                return outcome
        return FakeStreamResponse(status=404)


# ============================================================================
# Adapters
# ============================================================================

class StubAdapter:
    """Adapter returning a fixed candidate or raising; counts calls."""

    def __init__(self, name, candidate=None, error=None, delay=0.0):
        self.name = name
        self.candidate = candidate
        self.error = error
        self.delay = delay
        self.calls = 0

    async def resolve(self, content_id, kind):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.candidate


def candidate(url="https://media.example/stream", title="Test Title", backend=BackendName.NATIVE):
    return Candidate(source_url=url, title=title, origin_backend=backend)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def reset_metrics():
    """Fresh metrics collector for every test"""
    get_metrics_collector().reset()
    yield
    get_metrics_collector().reset()


@pytest.fixture
def content_id():
    """Default content id for tests"""
    return "dQw4w9WgXcQ"


@pytest.fixture
def audio():
    return MediaKind.AUDIO


@pytest.fixture
def video():
    return MediaKind.VIDEO
