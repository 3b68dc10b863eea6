"""
Pydantic models for API responses.
"""

from __future__ import annotations

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict


class HealthResponse(BaseModel):
    ok: bool = True
    cache_driver: str | None = Field(default=None, description="Active cache backend")
    rate_limit_enabled: bool = False


class RateLimitStatus(BaseModel):
    """Quota usage and ban state for the calling IP address."""

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "client_ip": "203.0.113.9",
                    "enabled": True,
                    "limit": 500,
                    "window_seconds": 60,
                    "requests_used": 12,
                    "requests_remaining": 488,
                    "banned": False,
                    "ban_expires": None,
                }
            ]
        }
    )

    client_ip: str
    enabled: bool
    limit: int = Field(ge=1, description="Requests allowed per window")
    window_seconds: int = Field(ge=1)
    requests_used: int = Field(ge=0, description="Requests logged in the trailing window")
    requests_remaining: int = Field(ge=0)
    banned: bool
    ban_expires: int | None = Field(default=None, description="Ban expiry as UNIX seconds")
