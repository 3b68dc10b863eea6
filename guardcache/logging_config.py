"""
guardcache - Structured Logging Configuration
=============================================
JSON-formatted structured logging with request context.

Features:
- JSON output for log aggregation
- Request-scoped context (request_id, client_ip, endpoint)
- Human-readable console output for development
- Log level filtering via environment

Usage:
    from guardcache.logging_config import get_logger, log_event

    logger = get_logger(__name__)
    logger.info("Cache cleared", extra={"removed": 12})

    # Or use the helper
    log_event("rate_limit.banned", client_ip="203.0.113.9", ban_duration=3600)
"""

from __future__ import annotations

import json
import logging
import os
import sys
import threading
import traceback
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from guardcache.config import settings


class LogLevel(str, Enum):
    """Standard log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# =============================================================================
# Request Context
# =============================================================================


class LogContext:
    """Thread-local storage for request-scoped log context."""

    _local = threading.local()
    _fields = ("request_id", "client_ip", "endpoint")

    @classmethod
    def set(cls, **values: str | None) -> None:
        """Set one or more context fields (request_id, client_ip, endpoint)."""
        for key, value in values.items():
            if key not in cls._fields:
                raise KeyError(f"Unknown log context field: {key}")
            setattr(cls._local, key, value)

    @classmethod
    def get(cls, key: str) -> str | None:
        return getattr(cls._local, key, None)

    @classmethod
    def clear(cls) -> None:
        """Clear all context."""
        for key in cls._fields:
            setattr(cls._local, key, None)

    @classmethod
    def get_all(cls) -> dict[str, Any]:
        return {key: cls.get(key) for key in cls._fields}


# =============================================================================
# JSON Formatter
# =============================================================================


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs in a consistent JSON format with timestamps,
    log levels, request context and any `extra` fields of the call.
    """

    _STANDARD_ATTRS = frozenset({
        "name", "msg", "args", "levelname", "levelno", "pathname",
        "filename", "module", "lineno", "funcName", "created", "msecs",
        "relativeCreated", "thread", "threadName", "processName",
        "process", "getMessage", "exc_info", "exc_text", "stack_info",
        "taskName", "message",
    })

    def __init__(
        self,
        *,
        service_name: str = "guardcache",
        environment: str = "production",
        include_extra_fields: bool = True,
    ) -> None:
        super().__init__()
        self.service_name = service_name
        self.environment = environment
        self.include_extra_fields = include_extra_fields

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": _format_timestamp(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "environment": self.environment,
        }

        if record.pathname:
            log_entry["file"] = Path(record.pathname).name
            log_entry["line"] = record.lineno
            log_entry["function"] = record.funcName

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": "".join(traceback.format_exception(*record.exc_info)),
            }

        for key, value in LogContext.get_all().items():
            if value is not None:
                log_entry[key] = value

        if self.include_extra_fields:
            for key, value in record.__dict__.items():
                if key not in self._STANDARD_ATTRS and not key.startswith("_"):
                    log_entry[key] = value

        return json.dumps(log_entry, default=str, ensure_ascii=False)


# =============================================================================
# Console Formatter (human-readable fallback)
# =============================================================================


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for console output during development."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        level_color = self.LEVEL_COLORS.get(record.levelname, "")
        request_id = LogContext.get("request_id") or "-"

        base = (
            f"{level_color}{record.levelname:<8}{self.RESET} "
            f"{_format_timestamp(record.created)} "
            f"[{request_id}] "
            f"{record.name}: "
            f"{record.getMessage()}"
        )

        if record.exc_info:
            base += "\n" + "".join(traceback.format_exception(*record.exc_info))

        return base


def _format_timestamp(created: float) -> str:
    """Format Unix timestamp to ISO 8601 string."""
    dt = datetime.fromtimestamp(created, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


# =============================================================================
# Logger Factory
# =============================================================================


def _get_log_level() -> int:
    level_str = os.environ.get("LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_str, logging.INFO)


def _convert_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    return getattr(logging, str(level).upper(), logging.INFO)


def _should_use_json() -> bool:
    """Determine if JSON logging should be used."""
    log_format = os.environ.get("LOG_FORMAT", "").lower()
    if log_format == "console":
        return False
    if log_format == "json":
        return True
    # Default to JSON in production, console in dev
    return not settings.debug_mode


_configured = False


def configure_logging(
    *,
    level: str | int | None = None,
    service_name: str = "guardcache",
    environment: str = "production",
    log_format: str | None = None,
) -> None:
    """
    Configure the root logger with structured logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        service_name: Service name for log identification
        environment: Environment label (production, staging, development)
        log_format: Format type ("json" or "console")
    """
    global _configured

    resolved_level = _get_log_level() if level is None else _convert_level(level)
    root = logging.getLogger()
    root.setLevel(resolved_level)
    root.handlers.clear()

    use_json = _should_use_json() if log_format is None else log_format == "json"

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(resolved_level)
    if use_json:
        handler.setFormatter(StructuredFormatter(service_name=service_name, environment=environment))
    else:
        handler.setFormatter(ConsoleFormatter())

    root.addHandler(handler)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger, configuring structured logging on first use.

    Args:
        name: Logger name (usually __name__)
    """
    if not _configured:
        configure_logging()
    return logging.getLogger(name)


# =============================================================================
# Helper Functions
# =============================================================================


def log_event(
    event_name: str,
    level: str | LogLevel = LogLevel.INFO,
    **extra_fields: Any,
) -> None:
    """
    Log a structured event with additional fields.

    Example:
        log_event("cache.gc", removed=3, driver="file")
    """
    logger = get_logger("guardcache.event")
    level_name = level.value if isinstance(level, LogLevel) else str(level)
    logger.log(_convert_level(level_name), event_name, extra=extra_fields)
