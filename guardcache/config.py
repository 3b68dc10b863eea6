"""
guardcache - Configuration Management
=====================================
Centralized configuration with environment variable support.

Usage:
    from guardcache.config import settings

    quota = settings.rate_limit_requests
    driver = settings.cache_driver
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


def _env_flag(name: str, current: bool) -> bool:
    """Read a boolean flag from the environment, keeping `current` when unset or unrecognised."""
    raw = os.environ.get(name, "").strip().lower()
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    return current


@dataclass
class Settings:
    """Application settings with environment variable overrides."""

    # Storage root
    storage_path: Path = field(default_factory=lambda: Path("storage"))

    # Rate limiting
    rate_limit_enabled: bool = False
    rate_limit_requests: int = 500
    rate_limit_window_seconds: int = 60
    rate_limit_ban_enabled: bool = True
    rate_limit_ban_duration_seconds: int = 3600
    rate_limit_gc_interval_seconds: int = 60
    rate_limit_db_path: Path | None = None

    # Cache
    cache_driver: str = "file"
    cache_path: Path | None = None
    cache_db_path: Path | None = None

    # SQLite
    sqlite_busy_timeout_seconds: float = 10.0

    # Reverse proxy / client IP extraction
    # When running behind a reverse proxy, set TRUST_PROXY_HEADERS=true and TRUSTED_PROXY_IPS
    # to correctly derive client IPs from Client-IP / X-Forwarded-For.
    trust_proxy_headers: bool = False
    trusted_proxy_ips: set[str] = field(default_factory=set)

    debug_mode: bool = False

    def __post_init__(self):
        """Load overrides from environment variables, then derive dependent paths."""
        self._load_env_overrides()
        if self.rate_limit_db_path is None:
            self.rate_limit_db_path = self.storage_path / "RateLimit" / "rate_limit.db"
        if self.cache_path is None:
            self.cache_path = self.storage_path / "Cache" / "FileCache"
        if self.cache_db_path is None:
            self.cache_db_path = self.storage_path / "Cache" / "DatabaseCache" / "guardcache_cache.db"

    def _load_env_overrides(self):
        """Load configuration from environment variables."""
        if storage_path := os.environ.get("GUARDCACHE_STORAGE_PATH"):
            self.storage_path = Path(storage_path)

        # Rate limiting
        self.rate_limit_enabled = _env_flag("RATE_LIMIT_ENABLED", self.rate_limit_enabled)
        if rate_limit := os.environ.get("RATE_LIMIT_REQUESTS"):
            self.rate_limit_requests = int(rate_limit)
        if window := os.environ.get("RATE_LIMIT_WINDOW"):
            self.rate_limit_window_seconds = int(window)
        self.rate_limit_ban_enabled = _env_flag("RATE_LIMIT_BAN_ENABLED", self.rate_limit_ban_enabled)
        if ban_duration := os.environ.get("RATE_LIMIT_BAN_DURATION"):
            self.rate_limit_ban_duration_seconds = int(ban_duration)
        if gc_interval := os.environ.get("RATE_LIMIT_GC_INTERVAL"):
            self.rate_limit_gc_interval_seconds = int(gc_interval)
        if rate_limit_db := os.environ.get("RATE_LIMIT_DB_PATH"):
            self.rate_limit_db_path = Path(rate_limit_db)

        # Cache
        if driver := os.environ.get("CACHE_DRIVER", "").strip():
            self.cache_driver = driver.lower()
        if cache_path := os.environ.get("CACHE_PATH"):
            self.cache_path = Path(cache_path)
        if cache_db_path := os.environ.get("CACHE_DB_PATH"):
            self.cache_db_path = Path(cache_db_path)

        if busy_timeout := os.environ.get("SQLITE_BUSY_TIMEOUT"):
            self.sqlite_busy_timeout_seconds = float(busy_timeout)

        # Reverse proxy / headers
        self.trust_proxy_headers = _env_flag("TRUST_PROXY_HEADERS", self.trust_proxy_headers)
        if trusted := os.environ.get("TRUSTED_PROXY_IPS", "").strip():
            self.trusted_proxy_ips = {ip.strip() for ip in trusted.split(",") if ip.strip()}
            if "*" in self.trusted_proxy_ips:
                logger.warning(
                    "TRUSTED_PROXY_IPS contains '*' - forwarded headers are trusted from any peer. "
                    "Clients can spoof their rate-limit identity."
                )

        if os.environ.get("DEBUG", "").lower() in ("1", "true"):
            self.debug_mode = True


# Singleton instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
        if _settings.debug_mode:
            logger.info("Settings loaded with debug mode enabled")
    return _settings


def reload_settings() -> Settings:
    """Force reload settings from environment."""
    global _settings
    _settings = Settings()
    return _settings


# Convenience alias
settings = get_settings()

CACHE_DRIVERS = frozenset({"file", "sqlite"})
