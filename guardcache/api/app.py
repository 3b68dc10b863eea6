"""
FastAPI application factory.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from guardcache import __version__
from guardcache.api.dependencies import get_app_settings, get_cache, get_rate_limiter
from guardcache.api.middleware import RateLimitMiddleware, get_client_ip
from guardcache.api.models import HealthResponse, RateLimitStatus
from guardcache.cache import CacheManager
from guardcache.config import Settings, get_settings
from guardcache.exceptions import GuardCacheError, exception_to_http_status, handle_exception
from guardcache.logging_config import get_logger
from guardcache.rate_limit import RateLimiter

logger = get_logger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """
    Build the application with its own rate limiter and cache manager.

    The rate limiter store is opened (and garbage-collected) here, so a
    storage failure aborts start-up instead of surfacing on the first request.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        app.state.cache_manager.close()
        app.state.rate_limiter.close()

    app = FastAPI(
        title="guardcache API",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.rate_limiter = RateLimiter.from_settings(settings, clock=clock)
    app.state.cache_manager = CacheManager(settings, clock=clock)
    # Open the configured backend now so a bad driver or path fails start-up
    app.state.cache_manager.get_instance()

    app.add_middleware(RateLimitMiddleware)

    @app.get("/v1/health", response_model=HealthResponse)
    def health(request: Request, response: Response) -> HealthResponse:
        response.headers["Cache-Control"] = "no-store"
        return HealthResponse(
            ok=True,
            cache_driver=get_cache(request).driver,
            rate_limit_enabled=get_app_settings(request).rate_limit_enabled,
        )

    @app.get("/v1/rate-limit/status", response_model=RateLimitStatus)
    def rate_limit_status(request: Request, response: Response) -> RateLimitStatus:
        response.headers["Cache-Control"] = "no-store"
        limiter = get_rate_limiter(request)
        client_ip = get_client_ip(request, get_app_settings(request))
        stats = limiter.get_stats(client_ip)
        return RateLimitStatus(client_ip=client_ip, enabled=limiter.config.enabled, **stats)

    @app.exception_handler(GuardCacheError)
    def _guardcache_error(request: Request, exc: GuardCacheError) -> JSONResponse:
        exc.log()
        return JSONResponse(
            status_code=exception_to_http_status(exc),
            content=handle_exception(exc),
            headers={"Cache-Control": "no-store"},
        )

    @app.exception_handler(Exception)
    def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=500, content=handle_exception(exc), headers={"Cache-Control": "no-store"})

    return app
