"""
SQLite cache backend: one row per key.

Values are stored as JSON in a BLOB column; `expiration` is NULL for entries
that never expire. Indexed lookups by key and by expiration keep `get` and
`gc` independent of the table size.
"""

from __future__ import annotations

import json
import sqlite3
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from guardcache.cache.base import (
    MISSING,
    CacheBackend,
    deserialize,
    expiration_for,
    is_expired,
    is_numeric,
    is_valid_expiration,
    serialize,
)
from guardcache.exceptions import CacheError
from guardcache.logging_config import LogLevel, get_logger, log_event
from guardcache.storage import SQLiteStore

logger = get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS cache (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    key TEXT UNIQUE NOT NULL,
    value BLOB NOT NULL,
    expiration INTEGER
);
CREATE INDEX IF NOT EXISTS idx_key ON cache (key);
CREATE INDEX IF NOT EXISTS idx_expiration ON cache (expiration);
"""


@contextmanager
def _cache_errors(operation: str, key: str | None = None) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        raise CacheError(
            f"SQLite cache error during {operation}: {exc}",
            operation=operation,
            cache_key=key[:64] if key else None,
        ) from exc


class DatabaseCache(CacheBackend):
    """
    Cache backend backed by a single SQLite file.

    Example:
        cache = DatabaseCache(Path("storage/Cache/DatabaseCache/cache.db"))
        cache.set("hits", 0)
        cache.increment("hits")  # 1
    """

    driver = "sqlite"

    def __init__(
        self,
        database_path: str | Path,
        *,
        clock: Callable[[], float] = time.time,
        busy_timeout_seconds: float = 10.0,
    ):
        """
        Args:
            database_path: Path to the SQLite file (parent directories are created)
            clock: Time source returning UNIX time in seconds
            busy_timeout_seconds: How long a blocked writer waits for the lock

        Raises:
            ConfigurationError: If the parent directory cannot be created.
            DatabaseError: If the database cannot be opened.
        """
        super().__init__(clock=clock)
        self.database_path = Path(database_path)
        self._store = SQLiteStore(
            self.database_path,
            schema=_SCHEMA,
            busy_timeout_seconds=busy_timeout_seconds,
        )

    def _fetch_live(self, conn: sqlite3.Connection, key: str) -> tuple[Any, int | None] | None:
        """Return (value, expiration) for a live entry, deleting it if expired."""
        row = conn.execute(
            "SELECT value, expiration FROM cache WHERE key = ? LIMIT 1", (key,)
        ).fetchone()
        if row is None:
            logger.debug("cache.miss", extra={"cache_key": key[:64], "reason": "not_found"})
            return None
        data, expiration = row
        if not is_valid_expiration(expiration):
            logger.warning("Cache row with invalid expiration ignored", extra={"cache_key": key[:64]})
            return None
        if is_expired(expiration, self._now()):
            conn.execute("DELETE FROM cache WHERE key = ?", (key,))
            log_event("cache.expired", LogLevel.DEBUG, cache_key=key[:64], driver=self.driver)
            return None
        try:
            return deserialize(data), expiration
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("Corrupt cache row ignored", extra={"cache_key": key[:64]})
            return None

    def _store_row(self, conn: sqlite3.Connection, key: str, value: Any, expiration: int | None) -> None:
        conn.execute(
            "INSERT INTO cache (key, value, expiration) VALUES (?, ?, ?) "
            "ON CONFLICT (key) DO UPDATE SET value = excluded.value, expiration = excluded.expiration",
            (key, serialize(value, key=key), expiration),
        )

    def get(self, key: str, default: Any = MISSING) -> Any:
        with _cache_errors("get", key):
            live = self._fetch_live(self._store.connection(), key)
        return default if live is None else live[0]

    def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        expiration = expiration_for(ttl, self._now())
        with _cache_errors("set", key):
            self._store_row(self._store.connection(), key, value, expiration)
        return True

    def delete(self, key: str) -> bool:
        with _cache_errors("delete", key):
            cursor = self._store.connection().execute("DELETE FROM cache WHERE key = ?", (key,))
        return cursor.rowcount > 0

    def has(self, key: str) -> bool:
        with _cache_errors("has", key):
            return self._fetch_live(self._store.connection(), key) is not None

    def increment(self, key: str, by: int | float = 1) -> int | float | None:
        with _cache_errors("increment", key), self._store.transaction() as conn:
            live = self._fetch_live(conn, key)
            if live is None or not is_numeric(live[0]):
                return None
            value, expiration = live
            new_value = value + by
            self._store_row(conn, key, new_value, expiration)
        return new_value

    def clear(self) -> None:
        with _cache_errors("clear"):
            self._store.connection().execute("DELETE FROM cache")

    def gc(self) -> int:
        with _cache_errors("gc"):
            removed = self._store.connection().execute(
                "DELETE FROM cache WHERE expiration IS NOT NULL AND expiration < ?",
                (self._now(),),
            ).rowcount
        if removed:
            log_event("cache.gc", LogLevel.DEBUG, removed=removed, driver=self.driver)
        return removed

    def close(self) -> None:
        self._store.close()
