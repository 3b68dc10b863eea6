"""
Dependency helpers for API routes.

Kept as plain functions reading request.app.state, where the application
factory stores its components.
"""

from __future__ import annotations

from fastapi import Request

from guardcache.cache import CacheBackend, CacheManager
from guardcache.config import Settings
from guardcache.rate_limit import RateLimiter


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_cache_manager(request: Request) -> CacheManager:
    return request.app.state.cache_manager


def get_cache(request: Request) -> CacheBackend:
    return get_cache_manager(request).get_instance()
