# tests/test_middleware.py
"""Tests for mediarelay/transport/middleware.py — request ID, error handling."""
from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient

from mediarelay.transport.middleware import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    ErrorHandlingMiddleware,
)


def _build_app(raise_for: set[str] | None = None, logging_enabled: bool = True):
    """Build a minimal FastAPI app with middleware for testing."""
    app = FastAPI()
    # Order matters: ErrorHandling wraps RequestID
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestLoggingMiddleware, enabled=logging_enabled)
    app.add_middleware(RequestIDMiddleware)

    raise_for = raise_for or set()

    @app.get("/test")
    def test_endpoint():
        if "/test" in raise_for:
            raise RuntimeError("boom")
        return {"ok": True}

    @app.get("/api/download")
    def download_endpoint(id: str | None = None):
        if "/api/download" in raise_for:
            raise RuntimeError("download boom")
        return {"id": id}

    return app


# ============================================================================
# RequestIDMiddleware
# ============================================================================

class TestRequestIDMiddleware:
    def test_generates_request_id(self):
        app = _build_app()
        client = TestClient(app)
        resp = client.get("/test")
        assert resp.status_code == 200
        assert "X-Request-ID" in resp.headers
        # Should be a UUID-style string
        rid = resp.headers["X-Request-ID"]
        assert len(rid) >= 32  # UUID has 36 chars with dashes

    def test_preserves_existing_request_id(self):
        app = _build_app()
        client = TestClient(app)
        custom_id = "my-custom-request-id-123"
        resp = client.get("/test", headers={"X-Request-ID": custom_id})
        assert resp.status_code == 200
        assert resp.headers["X-Request-ID"] == custom_id

    def test_ids_differ_between_requests(self):
        client = TestClient(_build_app())
        first = client.get("/test").headers["X-Request-ID"]
        second = client.get("/test").headers["X-Request-ID"]
        assert first != second


# ============================================================================
# RequestLoggingMiddleware
# ============================================================================

class TestRequestLoggingMiddleware:
    def test_logs_content_id(self, caplog):
        client = TestClient(_build_app())
        with caplog.at_level("INFO", logger="mediarelay.transport.middleware"):
            resp = client.get("/api/download", params={"id": "abc123"})
        assert resp.status_code == 200
        records = [r for r in caplog.records if r.name == "mediarelay.transport.middleware"]
        assert any("Request completed: GET /api/download status=200" in r.getMessage() for r in records)
        assert all(getattr(r, "content_id", None) == "abc123" for r in records)

    def test_disabled_logs_nothing(self, caplog):
        client = TestClient(_build_app(logging_enabled=False))
        with caplog.at_level("INFO", logger="mediarelay.transport.middleware"):
            client.get("/test")
        assert not [r for r in caplog.records if r.name == "mediarelay.transport.middleware"]


# ============================================================================
# ErrorHandlingMiddleware
# ============================================================================

class TestErrorHandlingMiddleware:
    def test_normal_request_passes_through(self):
        app = _build_app()
        client = TestClient(app, raise_server_exceptions=False)
        resp = client.get("/test")
        assert resp.status_code == 200
        assert resp.json() == {"ok": True}

    def test_generic_error_returns_500(self):
        app = _build_app(raise_for={"/test"})
        client = TestClient(app, raise_server_exceptions=False)
        resp = client.get("/test")
        assert resp.status_code == 500
        data = resp.json()
        assert data["error"] == "Internal server error"
        assert "request_id" in data

    def test_error_keeps_caller_request_id(self):
        app = _build_app(raise_for={"/api/download"})
        client = TestClient(app, raise_server_exceptions=False)
        resp = client.get("/api/download", params={"id": "x"}, headers={"X-Request-ID": "trace-1"})
        assert resp.status_code == 500
        assert resp.json()["request_id"] == "trace-1"
