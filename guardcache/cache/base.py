"""Cache backend interface.

Callers should depend on this abstraction (not a concrete backend) so the
storage driver can be switched through configuration alone.
"""

from __future__ import annotations

import json
import numbers
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from guardcache.exceptions import CacheError


class _Missing:
    """Sentinel type for cache misses."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


def is_numeric(value: Any) -> bool:
    """True for ints and floats. Booleans and numeric strings do not count."""
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def expiration_for(ttl: int | None, now: int) -> int | None:
    """
    Absolute expiry for a TTL in seconds.

    `None` and `0` both mean "never expires" for every backend. A zero TTL does
    not request immediate expiry; callers wanting that should `delete` instead.
    """
    if ttl is None or ttl == 0:
        return None
    if ttl < 0:
        raise ValueError("ttl must be >= 0 or None")
    return now + int(ttl)


def is_expired(expiration: int | None, now: int) -> bool:
    return expiration is not None and expiration < now


def serialize(value: Any, *, key: str) -> bytes:
    """Encode `value` as UTF-8 JSON. Raises CacheError for unencodable values."""
    try:
        return json.dumps(value, ensure_ascii=False, allow_nan=False).encode("utf-8")
    except (TypeError, ValueError) as exc:
        # UnicodeEncodeError (lone surrogates) is a ValueError
        raise CacheError(
            f"Value is not serializable: {exc}",
            operation="set",
            cache_key=key[:64],
        ) from exc


def deserialize(data: str | bytes) -> Any:
    return json.loads(data)


def is_valid_expiration(expiration: Any) -> bool:
    """True for None or an integer timestamp (booleans excluded)."""
    return expiration is None or (isinstance(expiration, int) and not isinstance(expiration, bool))


class CacheBackend(ABC):
    """
    Interface for cache backends.

    Values are serialized as JSON, so strings, numbers, booleans, None, lists
    and string-keyed mappings round-trip. Expired entries are deleted lazily
    by `get`/`has` and in bulk by `gc`.
    """

    driver: str = ""

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    @abstractmethod
    def get(self, key: str, default: Any = MISSING) -> Any:
        """Return the cached value, or `default` if absent or expired."""
        raise NotImplementedError

    @abstractmethod
    def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """Store `value` under `key`. `ttl` of None or 0 never expires."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove an entry. Returns True if it existed."""
        raise NotImplementedError

    @abstractmethod
    def has(self, key: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def increment(self, key: str, by: int | float = 1) -> int | float | None:
        """
        Add `by` to a numeric entry and return the new value.

        Returns None when the key is missing or its value is not numeric; the
        stored value is left unchanged in that case. The entry keeps its
        existing expiration.
        """
        raise NotImplementedError

    def decrement(self, key: str, by: int | float = 1) -> int | float | None:
        return self.increment(key, -by)

    @abstractmethod
    def clear(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def gc(self) -> int:
        """Delete expired entries. Returns the number removed."""
        raise NotImplementedError

    def close(self) -> None:
        """Release held resources."""
