"""
Server-side rate limiting and IP banning using SQLite-based storage.

Every admitted request is appended to the `requests` table; the number of rows
for an IP inside the trailing window decides whether the next request is
admitted. A violation can escalate to a timed ban stored in the `bans` table,
independent of the window. Both tables live in one SQLite file so several
worker processes can share the ledger on a single node.

Example:
    limiter = RateLimiter(Path("storage/RateLimit/rate_limit.db"), RateLimitConfig(enabled=True))
    decision = limiter.enforce("203.0.113.9")
    if not decision.allowed:
        return Response(decision.message, status=429)
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from guardcache.config import Settings
from guardcache.exceptions import ConfigurationError
from guardcache.logging_config import LogLevel, get_logger, log_event
from guardcache.storage import SQLiteStore, translate_errors

logger = get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS requests (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    ip_address TEXT NOT NULL,
    timestamp INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_requests_ip_timestamp ON requests (ip_address, timestamp);

CREATE TABLE IF NOT EXISTS bans (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    ip_address TEXT NOT NULL UNIQUE,
    ban_expires INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_bans_ban_expires ON bans (ban_expires);
"""

THROTTLED_MESSAGE = "Too many requests. Please try again later."


def banned_message(seconds: int) -> str:
    return f"You are banned for {seconds} seconds."


@dataclass
class RateLimitConfig:
    """Configuration for rate limiting."""

    enabled: bool = True
    requests_per_window: int = 500
    window_seconds: int = 60
    ban_enabled: bool = True
    ban_duration_seconds: int = 3600
    gc_interval_seconds: int = 60  # Inline cleanup at most once per interval

    def __post_init__(self) -> None:
        if self.requests_per_window < 1:
            raise ConfigurationError("requests_per_window must be >= 1", setting_name="rate_limit_requests")
        if self.window_seconds < 1:
            raise ConfigurationError("window_seconds must be >= 1", setting_name="rate_limit_window_seconds")
        if self.ban_duration_seconds < 1:
            raise ConfigurationError(
                "ban_duration_seconds must be >= 1", setting_name="rate_limit_ban_duration_seconds"
            )

    @classmethod
    def from_settings(cls, settings: Settings) -> RateLimitConfig:
        return cls(
            enabled=settings.rate_limit_enabled,
            requests_per_window=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
            ban_enabled=settings.rate_limit_ban_enabled,
            ban_duration_seconds=settings.rate_limit_ban_duration_seconds,
            gc_interval_seconds=settings.rate_limit_gc_interval_seconds,
        )


class LimitState(str, Enum):
    """Outcome of a rate limit check for one request."""
    ADMITTED = "admitted"
    THROTTLED = "throttled"
    BANNED = "banned"


@dataclass(frozen=True)
class RateLimitDecision:
    """
    Result of `RateLimiter.enforce`.

    Attributes:
        state: Whether the request was admitted, throttled or refused because of a ban.
        message: Plain-text message for rejected requests (None when admitted).
        retry_after_seconds: Suggested wait before retrying (None when admitted).
    """

    state: LimitState
    message: str | None = None
    retry_after_seconds: int | None = None

    @property
    def allowed(self) -> bool:
        return self.state is LimitState.ADMITTED


ADMITTED = RateLimitDecision(LimitState.ADMITTED)


@dataclass(frozen=True)
class GarbageCollectionResult:
    requests_removed: int
    bans_removed: int


class RateLimiter:
    """
    SQLite-based sliding-window rate limiter with IP bans.

    Construction prepares the store (directory, WAL pragmas, tables) and runs
    garbage collection. `enforce` performs the ban check, the quota check and
    the request log inside one `BEGIN IMMEDIATE` transaction, so concurrent
    workers cannot admit themselves on the same stale count.

    Re-banning an already banned IP replaces its expiry with
    `now + ban_duration`; durations do not accumulate.
    """

    def __init__(
        self,
        storage_path: str | Path,
        config: RateLimitConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
        busy_timeout_seconds: float = 10.0,
        collect_on_init: bool = True,
    ):
        """
        Initialize the rate limiter.

        Args:
            storage_path: Path to the SQLite database file (created if needed)
            config: Rate limit configuration
            clock: Time source returning UNIX time in seconds
            busy_timeout_seconds: How long a blocked writer waits for the lock
            collect_on_init: Run garbage collection before returning

        Raises:
            ConfigurationError: If the storage directory cannot be created.
            DatabaseError: If the database cannot be opened or prepared.
        """
        self.storage_path = Path(storage_path)
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._store = SQLiteStore(
            self.storage_path,
            schema=_SCHEMA,
            busy_timeout_seconds=busy_timeout_seconds,
        )
        self._last_gc_at: int | None = None
        if collect_on_init:
            self.collect_garbage()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        clock: Callable[[], float] = time.time,
        collect_on_init: bool = True,
    ) -> RateLimiter:
        return cls(
            settings.rate_limit_db_path,
            RateLimitConfig.from_settings(settings),
            clock=clock,
            busy_timeout_seconds=settings.sqlite_busy_timeout_seconds,
            collect_on_init=collect_on_init,
        )

    def _now(self) -> int:
        return int(self._clock())

    # -------------------------------------------------------------------------
    # Enforcement
    # -------------------------------------------------------------------------

    def enforce(self, ip_address: str) -> RateLimitDecision:
        """
        Admit, log, or reject a request from `ip_address`.

        Returns an admitted decision without touching the store when rate
        limiting is disabled.
        """
        if not self.config.enabled:
            return ADMITTED

        now = self._now()
        self._maybe_collect_garbage(now)
        new_ban_expires = None

        with translate_errors("enforce", path=self.storage_path), self._store.transaction() as conn:
            ban_expires = self._active_ban_expiry(conn, ip_address, now)
            if ban_expires is not None:
                decision = RateLimitDecision(
                    LimitState.BANNED,
                    banned_message(ban_expires - now),
                    ban_expires - now,
                )
            elif self._count_in_window(conn, ip_address, now) >= self.config.requests_per_window:
                if self.config.ban_enabled:
                    duration = self.config.ban_duration_seconds
                    new_ban_expires = now + duration
                    self._upsert_ban(conn, ip_address, new_ban_expires)
                    decision = RateLimitDecision(LimitState.BANNED, banned_message(duration), duration)
                else:
                    decision = RateLimitDecision(
                        LimitState.THROTTLED,
                        THROTTLED_MESSAGE,
                        self._retry_after(conn, ip_address, now),
                    )
            else:
                conn.execute(
                    "INSERT INTO requests (ip_address, timestamp) VALUES (?, ?)",
                    (ip_address, now),
                )
                decision = ADMITTED

        if not decision.allowed:
            log_event(
                "rate_limit.rejected",
                LogLevel.WARNING,
                client_ip=ip_address,
                state=decision.state.value,
                retry_after=decision.retry_after_seconds,
            )
        if new_ban_expires is not None:
            log_event("rate_limit.banned", LogLevel.WARNING, client_ip=ip_address, ban_expires=new_ban_expires)
        return decision

    def is_allowed(self, ip_address: str) -> bool:
        """True while fewer than `requests_per_window` requests were logged in the trailing window."""
        now = self._now()
        with translate_errors("is_allowed", table="requests", path=self.storage_path):
            count = self._count_in_window(self._store.connection(), ip_address, now)
        return count < self.config.requests_per_window

    def is_banned(self, ip_address: str) -> bool:
        now = self._now()
        with translate_errors("is_banned", table="bans", path=self.storage_path):
            return self._active_ban_expiry(self._store.connection(), ip_address, now) is not None

    def ban_expires_at(self, ip_address: str) -> int | None:
        """Stored ban expiry for `ip_address`, or None. The row may already be expired."""
        with translate_errors("ban_expires_at", table="bans", path=self.storage_path):
            row = self._store.connection().execute(
                "SELECT ban_expires FROM bans WHERE ip_address = ? LIMIT 1",
                (ip_address,),
            ).fetchone()
        return int(row[0]) if row else None

    def ban_ip(self, ip_address: str, duration_seconds: int | None = None) -> int:
        """
        Ban `ip_address` until now + duration (default: configured ban duration).

        An existing ban is replaced, not extended.

        Returns:
            The ban expiry as UNIX seconds.
        """
        duration = self.config.ban_duration_seconds if duration_seconds is None else int(duration_seconds)
        if duration < 1:
            raise ValueError("duration_seconds must be >= 1")
        expires = self._now() + duration
        with translate_errors("ban_ip", table="bans", path=self.storage_path):
            self._upsert_ban(self._store.connection(), ip_address, expires)
        log_event("rate_limit.banned", LogLevel.WARNING, client_ip=ip_address, ban_expires=expires)
        return expires

    def unban_ip(self, ip_address: str) -> bool:
        """Lift a ban. Returns True if a ban row existed."""
        with translate_errors("unban_ip", table="bans", path=self.storage_path):
            cursor = self._store.connection().execute(
                "DELETE FROM bans WHERE ip_address = ?", (ip_address,)
            )
        return cursor.rowcount > 0

    def log_request(self, ip_address: str) -> None:
        with translate_errors("log_request", table="requests", path=self.storage_path):
            self._store.connection().execute(
                "INSERT INTO requests (ip_address, timestamp) VALUES (?, ?)",
                (ip_address, self._now()),
            )

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def collect_garbage(self) -> GarbageCollectionResult:
        """
        Remove requests older than the window and bans that have expired.

        Requests with `timestamp >= now - window` and bans with
        `ban_expires > now` are never touched.
        """
        now = self._now()
        window_start = now - self.config.window_seconds
        with translate_errors("collect_garbage", path=self.storage_path), self._store.transaction() as conn:
            requests_removed = conn.execute(
                "DELETE FROM requests WHERE timestamp < ?", (window_start,)
            ).rowcount
            bans_removed = conn.execute(
                "DELETE FROM bans WHERE ban_expires <= ?", (now,)
            ).rowcount
        self._last_gc_at = now

        if requests_removed or bans_removed:
            log_event(
                "rate_limit.gc",
                LogLevel.DEBUG,
                requests_removed=requests_removed,
                bans_removed=bans_removed,
            )
        return GarbageCollectionResult(requests_removed=requests_removed, bans_removed=bans_removed)

    def _maybe_collect_garbage(self, now: int) -> None:
        if self._last_gc_at is None or now - self._last_gc_at >= self.config.gc_interval_seconds:
            self.collect_garbage()

    def get_stats(self, ip_address: str) -> dict[str, Any]:
        """
        Get rate limit statistics for an IP address.

        Returns:
            Dictionary with limit, window_seconds, requests_used,
            requests_remaining, banned and ban_expires.
        """
        now = self._now()
        with translate_errors("get_stats", path=self.storage_path):
            conn = self._store.connection()
            used = self._count_in_window(conn, ip_address, now)
            ban_expires = self._active_ban_expiry(conn, ip_address, now)
        return {
            "limit": self.config.requests_per_window,
            "window_seconds": self.config.window_seconds,
            "requests_used": used,
            "requests_remaining": max(0, self.config.requests_per_window - used),
            "banned": ban_expires is not None,
            "ban_expires": ban_expires,
        }

    def close(self) -> None:
        self._store.close()

    # -------------------------------------------------------------------------
    # Queries (run on the caller's connection so they can join a transaction)
    # -------------------------------------------------------------------------

    def _count_in_window(self, conn, ip_address: str, now: int) -> int:
        row = conn.execute(
            "SELECT COUNT(*) FROM requests WHERE ip_address = ? AND timestamp >= ?",
            (ip_address, now - self.config.window_seconds),
        ).fetchone()
        return int(row[0])

    def _active_ban_expiry(self, conn, ip_address: str, now: int) -> int | None:
        row = conn.execute(
            "SELECT ban_expires FROM bans WHERE ip_address = ? AND ban_expires > ? LIMIT 1",
            (ip_address, now),
        ).fetchone()
        return int(row[0]) if row else None

    def _upsert_ban(self, conn, ip_address: str, expires: int) -> None:
        conn.execute(
            "INSERT INTO bans (ip_address, ban_expires) VALUES (?, ?) "
            "ON CONFLICT (ip_address) DO UPDATE SET ban_expires = excluded.ban_expires",
            (ip_address, expires),
        )

    def _retry_after(self, conn, ip_address: str, now: int) -> int:
        row = conn.execute(
            "SELECT MIN(timestamp) FROM requests WHERE ip_address = ? AND timestamp >= ?",
            (ip_address, now - self.config.window_seconds),
        ).fetchone()
        if row and row[0] is not None:
            return max(1, int(row[0]) + self.config.window_seconds - now + 1)
        return self.config.window_seconds
