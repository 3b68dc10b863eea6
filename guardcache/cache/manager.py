"""
Cache driver selection.

`CacheManager` is constructed by whatever composes the application and passed
to collaborators; there is no module-level cache instance.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from guardcache.cache.base import CacheBackend
from guardcache.cache.database import DatabaseCache
from guardcache.cache.file import FileCache
from guardcache.config import CACHE_DRIVERS, Settings
from guardcache.exceptions import UnsupportedCacheDriverError
from guardcache.logging_config import log_event


def create_cache(
    driver: str,
    settings: Settings,
    *,
    clock: Callable[[], float] = time.time,
) -> CacheBackend:
    """
    Build a cache backend for `driver` ("file" or "sqlite").

    Raises:
        UnsupportedCacheDriverError: If the driver is unknown.
    """
    normalized = (driver or "").strip().lower()
    if normalized not in CACHE_DRIVERS:
        raise UnsupportedCacheDriverError(driver)
    if normalized == "sqlite":
        return DatabaseCache(
            settings.cache_db_path,
            clock=clock,
            busy_timeout_seconds=settings.sqlite_busy_timeout_seconds,
        )
    return FileCache(settings.cache_path, clock=clock)


class CacheManager:
    """
    Lazily builds and remembers the active cache backend.

    Repeated `get_instance()` calls return the same backend. Requesting a
    different driver builds a new backend that replaces the remembered one.

    Example:
        manager = CacheManager(settings)
        cache = manager.get_instance()          # configured driver
        sqlite_cache = manager.get_instance("sqlite")
    """

    def __init__(self, settings: Settings, *, clock: Callable[[], float] = time.time) -> None:
        self.settings = settings
        self._clock = clock
        self._instance: CacheBackend | None = None
        self._lock = threading.Lock()

    @property
    def driver(self) -> str | None:
        """Driver of the remembered backend, or None before first use."""
        return self._instance.driver if self._instance is not None else None

    def get_instance(self, driver: str | None = None) -> CacheBackend:
        requested = (driver or self.settings.cache_driver).strip().lower()
        with self._lock:
            if self._instance is not None and self._instance.driver == requested:
                return self._instance
            backend = create_cache(requested, self.settings, clock=self._clock)
            previous, self._instance = self._instance, backend
        if previous is not None:
            previous.close()
        log_event("cache.driver_selected", driver=requested)
        return backend

    def close(self) -> None:
        with self._lock:
            instance, self._instance = self._instance, None
        if instance is not None:
            instance.close()
