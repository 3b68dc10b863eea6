"""
guardcache API package.

Public exports:
- create_app: FastAPI factory (for `uvicorn --factory guardcache.api:create_app`)
- get_client_ip: client address resolution used by the rate limiter
"""

from __future__ import annotations

from guardcache.api.app import create_app
from guardcache.api.middleware import RateLimitMiddleware, get_client_ip

__all__ = ["RateLimitMiddleware", "create_app", "get_client_ip"]
