# tests/test_download_endpoint.py
"""End-to-end tests for /api/download through the FastAPI app."""
from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from conftest import FakeStreamResponse, FakeTunnelSession, StubAdapter, candidate
from mediarelay.config import settings
from mediarelay.core.domain import BackendName, MediaKind, MediaRequest, RequestMode
from mediarelay.core.errors import FleetExhausted, MirrorUnreachable, NoUsableStream
from mediarelay.core.phase_chain import PhaseChain
from mediarelay.infra.resolution_service import ResolutionService
from mediarelay.infra.tunnel import StreamTunnel
from mediarelay.transport.download import RelayResponse
from mediarelay.transport.http_app import app


@pytest.fixture
def make_client():
    """Build a TestClient around a service wired to stub adapters and a fake tunnel session."""
    created = []

    def _make(adapters, routes=None, **client_kwargs):
        chain = PhaseChain(adapters)
        session = FakeTunnelSession(routes or {})
        tunnel = StreamTunnel(
            chain=chain,
            session_factory=lambda: session,
            canonical_host="https://www.youtube.com",
            user_agent="test-agent",
        )
        app.state.service = ResolutionService(chain=chain, tunnel=tunnel)
        client = TestClient(app, **client_kwargs)
        client.__enter__()
        created.append(client)
        return client, session

    yield _make

    for client in created:
        client.__exit__(None, None, None)
    app.state.service = None


def _failing_chain():
    return [
        StubAdapter(BackendName.NATIVE, error=NoUsableStream("ANDROID_VR: Sign in to confirm")),
        StubAdapter(BackendName.LIBRARY, error=MirrorUnreachable("HTTP 429")),
        StubAdapter(BackendName.MIRROR_A, error=FleetExhausted("mirror_a", ["a1: HTTP 500", "a2: timeout after 8s"])),
        StubAdapter(BackendName.MIRROR_B, error=FleetExhausted("mirror_b", ["b1: HTTP 403"])),
    ]


# ============================================================================
# Probe mode
# ============================================================================

class TestProbe:
    def test_native_success_short_circuits(self, make_client, content_id):
        adapters = [
            StubAdapter(BackendName.NATIVE, candidate("https://gv.example/a", "Never Gonna")),
            StubAdapter(BackendName.LIBRARY, candidate("https://other.example")),
        ]
        client, session = make_client(adapters)

        resp = client.get("/api/download", params={"id": content_id, "type": "audio"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ready"
        assert body["audio"] == {"url": "https://gv.example/a", "filename": "Never Gonna.m4a"}
        assert body["video"] is None
        assert body["fallbackUrl"] == settings.fallback_url_for(content_id)
        assert adapters[1].calls == 0
        assert session.calls == []

    def test_both_kinds_resolved_independently(self, make_client, content_id):
        adapters = [StubAdapter(BackendName.NATIVE, candidate("https://gv.example/x", "Clip"))]
        client, _ = make_client(adapters)

        body = client.get("/api/download", params={"id": content_id}).json()

        assert body["audio"]["filename"] == "Clip.m4a"
        assert body["video"]["filename"] == "Clip.mp4"
        assert adapters[0].calls == 2

    def test_all_phases_fail(self, make_client, content_id):
        adapters = _failing_chain()
        client, _ = make_client(adapters)

        resp = client.get("/api/download", params={"id": content_id, "type": "video"})

        assert resp.status_code == 200
        body = resp.json()
        assert body == {
            "audio": None,
            "video": None,
            "fallbackUrl": settings.fallback_url_for(content_id),
            "status": "fallback_required",
        }
        assert [a.calls for a in adapters] == [1, 1, 1, 1]

    def test_post_alias(self, make_client, content_id):
        client, _ = make_client([StubAdapter(BackendName.NATIVE, candidate())])
        resp = client.post(f"/api/download?id={content_id}&type=audio")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ready"


# ============================================================================
# Validation
# ============================================================================

class TestValidation:
    def test_missing_id(self, make_client):
        client, _ = make_client([StubAdapter(BackendName.NATIVE, candidate())])
        resp = client.get("/api/download")
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing video ID"}

    def test_missing_id_in_tunnel_mode(self, make_client):
        client, session = make_client([StubAdapter(BackendName.NATIVE, candidate())])
        resp = client.get("/api/download", params={"pipe": "true"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing video ID"}
        assert session.calls == []

    def test_unsupported_type(self, make_client, content_id):
        client, _ = make_client([StubAdapter(BackendName.NATIVE, candidate())])
        resp = client.get("/api/download", params={"id": content_id, "type": "flac"})
        assert resp.status_code == 400
        assert "flac" in resp.json()["error"]


# ============================================================================
# get_url
# ============================================================================

class TestGetUrl:
    def test_returns_single_url(self, make_client, content_id):
        client, session = make_client([
            StubAdapter(BackendName.NATIVE, error=NoUsableStream("blocked")),
            StubAdapter(BackendName.LIBRARY, candidate("https://gv.example/lib", "Track", BackendName.LIBRARY)),
        ])

        resp = client.get("/api/download", params={"id": content_id, "type": "audio", "get_url": "true"})

        assert resp.status_code == 200
        assert resp.json() == {"url": "https://gv.example/lib", "title": "Track", "filename": "Track.m4a"}
        assert session.calls == []

    def test_exhaustion_is_500_with_phase_tags(self, make_client, content_id):
        client, _ = make_client(_failing_chain())

        resp = client.get("/api/download", params={"id": content_id, "type": "audio", "get_url": "1"})

        assert resp.status_code == 500
        error = resp.json()["error"]
        assert error.startswith("All extraction phases failed: P1:")
        assert error.index("P1:") < error.index("P2:") < error.index("P3:") < error.index("P4:")
        assert "P3:a1: HTTP 500; a2: timeout after 8s" in error


# ============================================================================
# Tunnel mode
# ============================================================================

class TestTunnel:
    def test_streams_with_download_headers(self, make_client, content_id):
        upstream = FakeStreamResponse(200, {"Content-Length": "10", "Content-Type": "audio/mp4"}, [b"01234", b"56789"])
        client, _ = make_client(
            [StubAdapter(BackendName.NATIVE, candidate("https://gv.example/a", "Song: One"))],
            {"gv.example/a": upstream},
        )

        resp = client.get("/api/download", params={"id": content_id, "type": "audio", "pipe": "true"})

        assert resp.status_code == 200
        assert resp.content == b"0123456789"
        assert resp.headers["content-length"] == "10"
        assert resp.headers["content-type"] == "audio/mp4"
        assert resp.headers["content-disposition"] == 'attachment; filename="Song One.m4a"'
        assert resp.headers["accept-ranges"] == "bytes"
        assert resp.headers["cache-control"] == "no-cache"
        assert upstream.released

    def test_direct_url_rejected_then_chain(self, make_client, content_id):
        client, session = make_client(
            [StubAdapter(BackendName.NATIVE, candidate("https://gv.example/chain", "Clip"))],
            {
                "direct.example": FakeStreamResponse(403),
                "gv.example/chain": FakeStreamResponse(200, {}, [b"bytes"]),
            },
        )

        resp = client.get("/api/download", params={
            "id": content_id,
            "type": "video",
            "pipe": "true",
            "direct_url": "https://direct.example/videoplayback",
        })

        assert resp.status_code == 200
        assert resp.content == b"bytes"
        assert resp.headers["content-disposition"] == 'attachment; filename="Clip.mp4"'
        assert len(session.calls) == 2

    def test_non_ascii_title_streams(self, make_client, content_id):
        upstream = FakeStreamResponse(200, {"Content-Type": "audio/mp4"}, [b"abc"])
        client, _ = make_client(
            [StubAdapter(BackendName.NATIVE, candidate("https://gv.example/a", "日本の歌: Live"))],
            {"gv.example/a": upstream},
        )

        resp = client.get("/api/download", params={"id": content_id, "type": "audio", "pipe": "true"})

        assert resp.status_code == 200
        assert resp.content == b"abc"
        assert resp.headers["content-disposition"] == 'attachment; filename="Live.m4a"'
        assert upstream.released

    def test_direct_url_named_after_title_param(self, make_client, content_id):
        adapter = StubAdapter(BackendName.NATIVE, candidate("https://gv.example/chain", "Chain Title"))
        client, _ = make_client([adapter], {"direct.example": FakeStreamResponse(200, {}, [b"bytes"])})

        resp = client.get("/api/download", params={
            "id": content_id,
            "type": "audio",
            "pipe": "true",
            "direct_url": "https://direct.example/videoplayback",
            "title": "Never Gonna: Give",
        })

        assert resp.status_code == 200
        assert resp.headers["content-disposition"] == 'attachment; filename="Never Gonna Give.m4a"'
        assert adapter.calls == 0

    @pytest.mark.asyncio
    async def test_upstream_released_when_client_goes_away(self):
        upstream = FakeStreamResponse(200, {"Content-Length": "6"}, [b"abc", b"def"])
        tunnel = StreamTunnel(
            chain=PhaseChain([StubAdapter(BackendName.NATIVE, candidate("https://gv.example/a"))]),
            session_factory=lambda: FakeTunnelSession({"gv.example/a": upstream}),
        )
        stream = await tunnel.open(MediaRequest(content_id="abc", kind=MediaKind.AUDIO, mode=RequestMode.TUNNEL))

        async def receive():
            await asyncio.Event().wait()

        async def send(message):
            if message["type"] == "http.response.body" and message.get("body"):
                raise OSError("connection reset")

        with pytest.raises(Exception):
            await RelayResponse(stream)({"type": "http", "method": "GET"}, receive, send)
        assert upstream.released

    def test_exhausted_chain_is_500(self, make_client, content_id):
        client, session = make_client(_failing_chain())
        resp = client.get("/api/download", params={"id": content_id, "pipe": "true"})
        assert resp.status_code == 500
        assert resp.json()["error"].startswith("All extraction phases failed")
        assert session.calls == []

    def test_upstream_refusal_is_500(self, make_client, content_id):
        client, _ = make_client(
            [StubAdapter(BackendName.NATIVE, candidate("https://gv.example/a"))],
            {"gv.example/a": FakeStreamResponse(403)},
        )
        resp = client.get("/api/download", params={"id": content_id, "type": "audio", "pipe": "1"})
        assert resp.status_code == 500
        assert resp.json() == {"error": "Upstream returned HTTP 403"}


# ============================================================================
# Proxy action
# ============================================================================

class TestProxy:
    def test_missing_url(self, make_client):
        client, _ = make_client([StubAdapter(BackendName.NATIVE, candidate())])
        resp = client.get("/api/download", params={"action": "proxy"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing url"}

    def test_invalid_url(self, make_client):
        client, _ = make_client([StubAdapter(BackendName.NATIVE, candidate())])
        resp = client.get("/api/download", params={"action": "proxy", "url": "ftp://example.com/x"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid url"}

    def test_upstream_status_passed_through(self, make_client):
        client, _ = make_client(
            [StubAdapter(BackendName.NATIVE, candidate())],
            {"pipedapi.example": FakeStreamResponse(502, {"Content-Type": "application/json"}, [b'{"error":"bad"}'])},
        )
        resp = client.get("/api/download", params={"action": "proxy", "url": "https://pipedapi.example/streams/x"})
        assert resp.status_code == 502
        assert resp.json() == {"error": "bad"}
        assert resp.headers["access-control-allow-origin"] == "*"

    def test_post_body_forwarded(self, make_client):
        client, session = make_client(
            [StubAdapter(BackendName.NATIVE, candidate())],
            {"youtubei": FakeStreamResponse(200, {"Content-Type": "application/json"}, [b"{}"])},
        )
        resp = client.post(
            "/api/download?action=proxy&url=https%3A%2F%2Fwww.youtube.com%2Fyoutubei%2Fv1%2Fplayer",
            content=b'{"videoId":"abc"}',
        )
        assert resp.status_code == 200
        method, url, kwargs = session.calls[0]
        assert method == "POST"
        assert url == "https://www.youtube.com/youtubei/v1/player"
        assert kwargs["data"] == b'{"videoId":"abc"}'


# ============================================================================
# Health / metrics
# ============================================================================

class TestOperationalEndpoints:
    def test_health(self, make_client):
        client, _ = make_client([StubAdapter(BackendName.NATIVE, candidate())])
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "healthy"}
        assert resp.headers["X-Frame-Options"] == "DENY"
        assert "X-Request-ID" in resp.headers

    def test_metrics_counts_phases(self, make_client, content_id, monkeypatch):
        monkeypatch.setattr(settings, "metrics_token", None)
        client, _ = make_client([StubAdapter(BackendName.NATIVE, candidate())])
        client.get("/api/download", params={"id": content_id, "type": "audio"})

        resp = client.get("/metrics")

        assert resp.status_code == 200
        assert resp.json()["counters"]["resolver_phase_total{outcome=success,phase=native}"] == 1

    def test_metrics_token_enforced(self, make_client, monkeypatch):
        monkeypatch.setattr(settings, "metrics_token", "metrics-secret")
        client, _ = make_client([StubAdapter(BackendName.NATIVE, candidate())])

        assert client.get("/metrics").status_code == 401
        ok = client.get("/metrics", headers={"Authorization": "Bearer metrics-secret"})
        assert ok.status_code == 200

    def test_rate_limited(self, make_client, content_id, monkeypatch):
        monkeypatch.setattr(settings, "rate_limit_per_minute", 2)
        client, _ = make_client([StubAdapter(BackendName.NATIVE, candidate())])

        codes = [client.get("/api/download", params={"id": content_id, "type": "audio"}).status_code for _ in range(3)]

        assert codes == [200, 200, 429]
