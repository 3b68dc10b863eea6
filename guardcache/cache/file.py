"""
Filesystem cache backend: one JSON file per key.

File names are the MD5 hex digest of the key plus `.cache`, which keeps names
short and free of characters the filesystem rejects. Writes go through a
temporary file and an atomic rename, so readers in other processes see either
the old or the new entry, never a partial one.
"""

from __future__ import annotations

import hashlib
import json
import os
import tempfile
import threading
import time
from collections.abc import Callable
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
from guardcache.storage import ensure_directory

logger = get_logger(__name__)

CACHE_SUFFIX = ".cache"

# Distinguishes "no entry" from a stored entry whose value is null
_NO_ENTRY = object()


class FileCache(CacheBackend):
    """
    Cache backend storing each entry as `<md5(key)>.cache` in a directory.

    Example:
        cache = FileCache(Path("storage/Cache/FileCache"))
        cache.set("user:1", {"name": "Ann"}, ttl=3600)
        cache.get("user:1")  # {"name": "Ann"}
    """

    driver = "file"

    def __init__(self, cache_path: str | Path, *, clock: Callable[[], float] = time.time):
        """
        Args:
            cache_path: Directory holding the cache files (created if needed)
            clock: Time source returning UNIX time in seconds

        Raises:
            ConfigurationError: If the directory cannot be created.
        """
        super().__init__(clock=clock)
        self.cache_path = ensure_directory(Path(cache_path))
        self._lock = threading.Lock()

    def _file_for(self, key: str) -> Path:
        filename = hashlib.md5(key.encode("utf-8")).hexdigest() + CACHE_SUFFIX
        return self.cache_path / filename

    def _read_entry(self, path: Path) -> dict[str, Any] | None:
        """Load an entry file. Missing, unreadable or corrupt files read as None."""
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("Unable to read cache file", extra={"cache_file": path.name, "error": str(exc)})
            return None
        try:
            entry = deserialize(data)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("Corrupt cache file ignored", extra={"cache_file": path.name})
            return None
        if not isinstance(entry, dict) or "value" not in entry:
            return None
        if not is_valid_expiration(entry.get("expiration")):
            logger.warning("Cache file with invalid expiration ignored", extra={"cache_file": path.name})
            return None
        return entry

    def _write_entry(self, path: Path, key: str, value: Any, expiration: int | None) -> None:
        payload = serialize({"value": value, "expiration": expiration}, key=key)
        tmp_name = None
        try:
            # Temp file in the same directory (required for atomic rename)
            with tempfile.NamedTemporaryFile(
                mode="wb",
                dir=self.cache_path,
                delete=False,
                suffix=".tmp",
                prefix=".cache_",
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(payload)
            os.replace(tmp_name, path)
        except BaseException as exc:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            if isinstance(exc, OSError):
                raise CacheError(
                    f"Unable to write cache file: {exc}", operation="set", cache_key=key[:64]
                ) from exc
            raise

    def _load_live(self, key: str) -> Any:
        """Return the live entry dict for `key`, deleting it if expired."""
        path = self._file_for(key)
        entry = self._read_entry(path)
        if entry is None:
            logger.debug("cache.miss", extra={"cache_key": key[:64], "reason": "not_found"})
            return _NO_ENTRY
        if is_expired(entry.get("expiration"), self._now()):
            path.unlink(missing_ok=True)
            log_event("cache.expired", LogLevel.DEBUG, cache_key=key[:64], driver=self.driver)
            return _NO_ENTRY
        return entry

    def get(self, key: str, default: Any = MISSING) -> Any:
        entry = self._load_live(key)
        if entry is _NO_ENTRY:
            return default
        return entry["value"]

    def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        expiration = expiration_for(ttl, self._now())
        with self._lock:
            self._write_entry(self._file_for(key), key, value, expiration)
        return True

    def delete(self, key: str) -> bool:
        try:
            self._file_for(key).unlink()
        except FileNotFoundError:
            return False
        return True

    def has(self, key: str) -> bool:
        return self._load_live(key) is not _NO_ENTRY

    def increment(self, key: str, by: int | float = 1) -> int | float | None:
        with self._lock:
            entry = self._load_live(key)
            if entry is _NO_ENTRY or not is_numeric(entry["value"]):
                return None
            new_value = entry["value"] + by
            self._write_entry(self._file_for(key), key, new_value, entry.get("expiration"))
        return new_value

    def clear(self) -> None:
        with self._lock:
            for path in self.cache_path.glob(f"*{CACHE_SUFFIX}"):
                path.unlink(missing_ok=True)

    def gc(self) -> int:
        now = self._now()
        removed = 0
        for path in self.cache_path.glob(f"*{CACHE_SUFFIX}"):
            entry = self._read_entry(path)
            # Unreadable files are skipped, not deleted
            if entry is None:
                continue
            if is_expired(entry.get("expiration"), now):
                path.unlink(missing_ok=True)
                removed += 1
        if removed:
            log_event("cache.gc", LogLevel.DEBUG, removed=removed, driver=self.driver)
        return removed
