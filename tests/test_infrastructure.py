# tests/test_infrastructure.py
"""Tests for infrastructure: metrics, rate limiting, config, network context"""
import pytest
from unittest.mock import MagicMock

from conftest import make_context


class TestMetrics:
    def test_metrics_counter_increment(self):
        from mediarelay.infra.metrics import MetricsCollector

        collector = MetricsCollector()
        collector.inc_counter("test_counter", 1)
        collector.inc_counter("test_counter", 2)

        metrics = collector.get_metrics()
        assert metrics["counters"]["test_counter"] == 3

    def test_metrics_histogram_observe(self):
        from mediarelay.infra.metrics import MetricsCollector

        collector = MetricsCollector()
        collector.observe_histogram("test_histogram", 0.1)
        collector.observe_histogram("test_histogram", 0.2)
        collector.observe_histogram("test_histogram", 0.5)

        metrics = collector.get_metrics()
        stats = metrics["histograms"]["test_histogram"]
        assert stats["count"] == 3
        assert stats["min"] == 0.1
        assert stats["max"] == 0.5

    def test_metrics_with_labels(self):
        from mediarelay.infra.metrics import MetricsCollector

        collector = MetricsCollector()
        collector.inc_counter("resolver_phase_total", 1, {"phase": "native", "outcome": "success"})
        collector.inc_counter("resolver_phase_total", 2, {"phase": "library", "outcome": "failure"})

        metrics = collector.get_metrics()
        assert metrics["counters"]["resolver_phase_total{outcome=success,phase=native}"] == 1
        assert metrics["counters"]["resolver_phase_total{outcome=failure,phase=library}"] == 2

    def test_get_counter_with_labels(self):
        from mediarelay.infra.metrics import MetricsCollector

        collector = MetricsCollector()
        collector.inc_counter("fleet_race_total", 1, {"outcome": "won"})
        assert collector.get_counter("fleet_race_total", outcome="won") == 1
        assert collector.get_counter("fleet_race_total", outcome="exhausted") == 0

    def test_relay_metrics_names(self):
        from mediarelay.infra.metrics import RelayMetrics, get_metrics_collector

        RelayMetrics.tunnel_opened("direct")
        RelayMetrics.tunnel_bytes(1024)
        RelayMetrics.tunnel_bytes(1024)
        RelayMetrics.extraction_exhausted()
        with RelayMetrics.track_phase("mirror_a"):
            pass

        metrics = get_metrics_collector().get_metrics()
        assert metrics["counters"]["tunnel_opened_total{source=direct}"] == 1
        assert metrics["counters"]["tunnel_bytes_total"] == 2048
        assert metrics["counters"]["resolver_exhausted_total"] == 1
        assert metrics["histograms"]["resolver_phase_seconds{phase=mirror_a}"]["count"] == 1


class TestRateLimiter:
    def test_rate_limiter_allows_under_limit(self):
        from mediarelay.infra.rate_limiter import InMemoryRateLimiter

        limiter = InMemoryRateLimiter(max_requests=10, window_seconds=60)

        # Should allow first request
        allowed, retry_after = limiter.is_allowed("test_key")
        assert allowed is True
        assert retry_after is None

    def test_rate_limiter_blocks_over_limit(self):
        from mediarelay.infra.rate_limiter import InMemoryRateLimiter

        limiter = InMemoryRateLimiter(max_requests=2, window_seconds=60)

        # First two requests should be allowed
        limiter.is_allowed("test_key")
        limiter.is_allowed("test_key")

        # Third request should be blocked
        allowed, retry_after = limiter.is_allowed("test_key")
        assert allowed is False
        assert retry_after is not None
        assert retry_after > 0

    def test_keys_are_independent(self):
        from mediarelay.infra.rate_limiter import InMemoryRateLimiter

        limiter = InMemoryRateLimiter(max_requests=1, window_seconds=60)
        assert limiter.is_allowed("10.0.0.1")[0]
        assert limiter.is_allowed("10.0.0.2")[0]
        assert not limiter.is_allowed("10.0.0.1")[0]

    def test_cleanup_removes_stale_keys(self):
        from mediarelay.infra.rate_limiter import InMemoryRateLimiter

        limiter = InMemoryRateLimiter(max_requests=5, window_seconds=60)
        limiter.is_allowed("old")
        limiter._requests["old"] = [0.0]

        assert limiter.cleanup(max_age_seconds=60) == 1
        assert "old" not in limiter._requests

    @pytest.mark.asyncio
    async def test_dependency_uses_forwarded_for(self):
        from fastapi import HTTPException
        from mediarelay.infra.rate_limiter import InMemoryRateLimiter, RateLimitDependency

        dep = RateLimitDependency(InMemoryRateLimiter(max_requests=1, window_seconds=60))
        request = MagicMock()
        request.client.host = "127.0.0.1"
        request.headers = {"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}

        await dep(request)
        with pytest.raises(HTTPException) as exc_info:
            await dep(request)

        assert exc_info.value.status_code == 429
        assert "Retry-After" in exc_info.value.headers
        assert "203.0.113.7" in dep.limiter._requests


class TestConfig:
    def test_defaults(self):
        from mediarelay.config import Settings

        s = Settings(_env_file=None)
        assert s.fleet_subset_size == 6
        assert s.client_wave_size == 4
        assert s.discovery_timeout < s.native_timeout < s.library_timeout
        assert s.profile_order == ["ANDROID_VR", "TVHTML5_SIMPLY_EMBEDDED_PLAYER", "TVHTML5"]

    def test_profile_order_parsing(self):
        from mediarelay.config import Settings

        s = Settings(native_profiles=" IOS, ,TVHTML5 ", _env_file=None)
        assert s.profile_order == ["IOS", "TVHTML5"]

    def test_fallback_url(self):
        from mediarelay.config import Settings

        s = Settings(fallback_url_template="https://fallback.example/?v={content_id}", _env_file=None)
        assert s.fallback_url_for("abc") == "https://fallback.example/?v=abc"

    def test_invalid_env_rejected(self):
        from mediarelay.config import Settings
        from pydantic import ValidationError

        with pytest.raises(ValidationError):
            Settings(app_env="banana", _env_file=None)

    def test_production_requires_metrics_token(self):
        from mediarelay.config import Settings, validate_or_warn

        s = Settings(app_env="prod", metrics_token=None, _env_file=None)
        assert s.validate_required_for_production() == ["metrics_token"]
        with pytest.raises(RuntimeError):
            validate_or_warn(s)

    def test_risky_config_warnings(self):
        from mediarelay.config import Settings, warn_on_risky_config

        s = Settings(
            fleet_subset_size=0,
            discovery_timeout=60,
            native_profiles="",
            fallback_url_template="https://fallback.example",
            _env_file=None,
        )
        warnings = warn_on_risky_config(s)
        assert len(warnings) == 4


class TestNetworkContext:
    def test_direct_request(self):
        session = MagicMock()
        ctx = make_context(session)

        ctx.get("https://mirror.example/streams/x", headers={"Accept": "application/json"}, timeout=5)

        session.get.assert_called_once_with(
            "https://mirror.example/streams/x",
            headers={"User-Agent": "test-agent", "Accept": "application/json"},
            timeout=5,
        )

    def test_proxy_and_relay(self):
        session = MagicMock()
        ctx = make_context(session, proxy="http://proxy:3128", relay_base="https://app.example/api/download")

        ctx.post("https://host.example/p?a=1", json={"k": "v"})

        args, kwargs = session.post.call_args
        assert args[0] == "https://app.example/api/download?action=proxy&url=https%3A%2F%2Fhost.example%2Fp%3Fa%3D1"
        assert kwargs["proxy"] == "http://proxy:3128"
        assert kwargs["json"] == {"k": "v"}

    def test_server_context(self):
        from mediarelay.config import settings
        from mediarelay.infra.network_context import server_context

        ctx = server_context()
        assert ctx.name == "server"
        assert ctx.user_agent == settings.user_agent
        assert ctx.proxy is None and ctx.relay_base is None
