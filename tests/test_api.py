"""
Tests for the FastAPI surface (guardcache.api).

Rate limiting is exercised end to end through the middleware; the client
address seen by the app under TestClient is "testclient".
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

from guardcache.api import create_app, get_client_ip
from guardcache.api.dependencies import get_cache
from guardcache.api.middleware import UNKNOWN_CLIENT
from guardcache.exceptions import DatabaseError, UnsupportedCacheDriverError


@pytest.fixture
def limited_settings(settings):
    """Settings with a quota of 3 requests per minute and one hour bans."""
    settings.rate_limit_enabled = True
    settings.rate_limit_requests = 3
    settings.rate_limit_window_seconds = 60
    settings.rate_limit_ban_duration_seconds = 3600
    return settings


def _request(client_host: str, headers: dict[str, str] | None = None) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in (headers or {}).items()],
        "client": (client_host, 50000),
    }
    return Request(scope)


def test_health(settings, clock):
    with TestClient(create_app(settings, clock=clock)) as client:
        resp = client.get("/v1/health")

    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "cache_driver": "file", "rate_limit_enabled": False}
    assert resp.headers["cache-control"] == "no-store"


def test_health_reports_sqlite_driver(settings, clock):
    settings.cache_driver = "sqlite"
    with TestClient(create_app(settings, clock=clock)) as client:
        resp = client.get("/v1/health")

    assert resp.json()["cache_driver"] == "sqlite"


def test_disabled_rate_limit_admits_everything(settings, clock):
    settings.rate_limit_requests = 1
    with TestClient(create_app(settings, clock=clock)) as client:
        statuses = {client.get("/v1/health").status_code for _ in range(5)}

    assert statuses == {200}


def test_quota_exceeded_bans_client(limited_settings, clock):
    with TestClient(create_app(limited_settings, clock=clock)) as client:
        for _ in range(3):
            assert client.get("/v1/health").status_code == 200

        resp = client.get("/v1/health")

    assert resp.status_code == 429
    assert resp.headers["content-type"].startswith("text/plain")
    assert resp.text == "You are banned for 3600 seconds."
    assert resp.headers["retry-after"] == "3600"
    assert resp.headers["cache-control"] == "no-store"


def test_banned_client_sees_remaining_time(limited_settings, clock):
    with TestClient(create_app(limited_settings, clock=clock)) as client:
        for _ in range(4):
            client.get("/v1/health")
        clock.advance(600)

        resp = client.get("/v1/rate-limit/status")

    assert resp.status_code == 429
    assert resp.text == "You are banned for 3000 seconds."


def test_quota_exceeded_without_ban_throttles(limited_settings, clock):
    limited_settings.rate_limit_ban_enabled = False
    with TestClient(create_app(limited_settings, clock=clock)) as client:
        for _ in range(3):
            client.get("/v1/health")

        resp = client.get("/v1/health")

    assert resp.status_code == 429
    assert resp.text == "Too many requests. Please try again later."
    assert int(resp.headers["retry-after"]) >= 1


def test_rate_limit_status(limited_settings, clock):
    limited_settings.rate_limit_requests = 10
    with TestClient(create_app(limited_settings, clock=clock)) as client:
        client.get("/v1/health")
        resp = client.get("/v1/rate-limit/status")

    assert resp.status_code == 200
    body = resp.json()
    assert body["client_ip"] == "testclient"
    assert body["enabled"] is True
    assert body["limit"] == 10
    # The status request itself is logged before the route runs
    assert body["requests_used"] == 2
    assert body["requests_remaining"] == 8
    assert body["banned"] is False
    assert body["ban_expires"] is None


def test_forwarded_clients_limited_separately(limited_settings, clock):
    limited_settings.trust_proxy_headers = True
    limited_settings.trusted_proxy_ips = {"testclient"}
    with TestClient(create_app(limited_settings, clock=clock)) as client:
        first = {"X-Forwarded-For": "203.0.113.9, 10.0.0.1"}
        for _ in range(4):
            client.get("/v1/health", headers=first)

        assert client.get("/v1/health", headers=first).status_code == 429
        resp = client.get("/v1/health", headers={"X-Forwarded-For": "198.51.100.7"})

    assert resp.status_code == 200


def test_storage_failure_fails_closed(settings, clock):
    app = create_app(settings, clock=clock)

    def broken_enforce(ip_address):
        raise DatabaseError("disk I/O error", operation="enforce")

    app.state.rate_limiter.enforce = broken_enforce
    with TestClient(app) as client:
        resp = client.get("/v1/health")

    assert resp.status_code == 500
    body = resp.json()
    assert body["error"] == "data_store_error"
    assert body["message"] == "Service temporarily unavailable"
    assert "detail" not in body
    assert body["request_id"]


def test_storage_error_in_route_hides_path(settings, clock):
    app = create_app(settings, clock=clock)

    def broken_stats(ip_address):
        raise DatabaseError("disk I/O error", operation="get_stats", table="requests", path="/srv/guard/rate_limit.db")

    app.state.rate_limiter.get_stats = broken_stats
    with TestClient(app) as client:
        resp = client.get("/v1/rate-limit/status")

    assert resp.status_code == 500
    assert resp.json()["error"] == "data_store_error"
    assert "/srv/guard" not in resp.text
    assert "requests" not in resp.text


def test_get_cache_dependency_returns_active_backend(settings, clock):
    app = create_app(settings, clock=clock)
    request = Request({"type": "http", "headers": [], "app": app})

    cache = get_cache(request)

    assert cache is app.state.cache_manager.get_instance()
    cache.set("greeting", "hello")
    assert get_cache(request).get("greeting") == "hello"
    app.state.cache_manager.close()
    app.state.rate_limiter.close()


def test_unknown_cache_driver_fails_startup(settings, clock):
    settings.cache_driver = "redis"
    with pytest.raises(UnsupportedCacheDriverError):
        create_app(settings, clock=clock)


class TestGetClientIp:
    """Tests for client address resolution."""

    def test_peer_address_when_proxy_headers_untrusted(self, settings):
        request = _request("10.0.0.1", {"X-Forwarded-For": "203.0.113.9"})
        assert get_client_ip(request, settings) == "10.0.0.1"

    def test_untrusted_peer_cannot_spoof(self, settings):
        settings.trust_proxy_headers = True
        settings.trusted_proxy_ips = {"10.0.0.1"}
        request = _request("10.0.0.99", {"X-Forwarded-For": "203.0.113.9"})
        assert get_client_ip(request, settings) == "10.0.0.99"

    def test_client_ip_header_preferred(self, settings):
        settings.trust_proxy_headers = True
        settings.trusted_proxy_ips = {"10.0.0.1"}
        request = _request(
            "10.0.0.1",
            {"Client-IP": "192.0.2.5", "X-Forwarded-For": "203.0.113.9", "X-Real-IP": "198.51.100.1"},
        )
        assert get_client_ip(request, settings) == "192.0.2.5"

    def test_first_valid_forwarded_address(self, settings):
        settings.trust_proxy_headers = True
        settings.trusted_proxy_ips = {"*"}
        request = _request("10.0.0.1", {"X-Forwarded-For": "unknown, 203.0.113.9, 10.0.0.2"})
        assert get_client_ip(request, settings) == "203.0.113.9"

    def test_real_ip_fallback(self, settings):
        settings.trust_proxy_headers = True
        settings.trusted_proxy_ips = {"10.0.0.1"}
        request = _request("10.0.0.1", {"X-Real-IP": "2001:db8::1"})
        assert get_client_ip(request, settings) == "2001:db8::1"

    def test_invalid_headers_fall_back_to_peer(self, settings):
        settings.trust_proxy_headers = True
        settings.trusted_proxy_ips = {"10.0.0.1"}
        request = _request("10.0.0.1", {"Client-IP": "not-an-ip", "X-Forwarded-For": "garbage"})
        assert get_client_ip(request, settings) == "10.0.0.1"

    def test_missing_peer_uses_unknown_identity(self, settings):
        request = Request({"type": "http", "method": "GET", "path": "/", "headers": []})
        assert get_client_ip(request, settings) == UNKNOWN_CLIENT

    def test_missing_peer_never_trusted_as_proxy(self, settings):
        settings.trust_proxy_headers = True
        settings.trusted_proxy_ips = {"10.0.0.1"}
        request = Request(
            {"type": "http", "method": "GET", "path": "/", "headers": [(b"x-forwarded-for", b"203.0.113.9")]}
        )
        assert get_client_ip(request, settings) == "unknown"
