"""
Middleware and request helpers for the API.
"""

from __future__ import annotations

import ipaddress

from fastapi import Request
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from guardcache.config import Settings
from guardcache.exceptions import DataStoreError, exception_to_http_status, handle_exception
from guardcache.logging_config import LogContext
from guardcache.rate_limit import RateLimitDecision, RateLimiter

# Rate-limit identity for requests without a peer address (e.g. Unix sockets)
UNKNOWN_CLIENT = "unknown"


def _valid_ip(value: str) -> str | None:
    candidate = value.strip()
    if not candidate:
        return None
    try:
        ipaddress.ip_address(candidate)
    except ValueError:
        return None
    return candidate


def get_client_ip(request: Request, settings: Settings) -> str:
    """
    Get the real client IP address, preventing spoofing via forwarded headers.

    Forwarded headers are only honoured when proxy headers are trusted and the
    peer is a trusted proxy. Preference order: Client-IP, the first valid
    address in X-Forwarded-For, X-Real-IP, then the peer address. Requests
    with no peer address share the UNKNOWN_CLIENT identity.
    """
    client_host = (request.client.host if request.client else "") or UNKNOWN_CLIENT

    if not settings.trust_proxy_headers:
        return client_host

    trusted = {ip.strip() for ip in (settings.trusted_proxy_ips or set()) if ip and ip.strip()}
    if not ("*" in trusted or client_host in trusted):
        # Do not trust forwarded headers from untrusted sources.
        return client_host

    if ip := _valid_ip(request.headers.get("client-ip") or ""):
        return ip
    for candidate in (request.headers.get("x-forwarded-for") or "").split(","):
        if ip := _valid_ip(candidate):
            return ip
    if ip := _valid_ip(request.headers.get("x-real-ip") or ""):
        return ip
    return client_host


def _enforce(limiter: RateLimiter, client_ip: str, endpoint: str) -> RateLimitDecision:
    # Runs in a worker thread; the log context is thread-local.
    LogContext.set(client_ip=client_ip, endpoint=endpoint)
    try:
        return limiter.enforce(client_ip)
    finally:
        LogContext.clear()


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Enforce the rate limit before any route runs.

    Rejected requests get a 429 plain-text response and never reach the route
    handler. Storage failures fail closed with the JSON error envelope.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        limiter: RateLimiter = request.app.state.rate_limiter
        client_ip = get_client_ip(request, request.app.state.settings)

        try:
            decision = await run_in_threadpool(_enforce, limiter, client_ip, request.url.path)
        except DataStoreError as exc:
            exc.log()
            return JSONResponse(
                status_code=exception_to_http_status(exc),
                content=handle_exception(exc),
                headers={"Cache-Control": "no-store"},
            )

        if not decision.allowed:
            headers = {"Cache-Control": "no-store"}
            if decision.retry_after_seconds is not None:
                headers["Retry-After"] = str(decision.retry_after_seconds)
            return PlainTextResponse(decision.message, status_code=429, headers=headers)

        return await call_next(request)
