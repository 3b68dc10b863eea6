"""
Centralized exception hierarchy for guardcache.

Policy rejections (quota exceeded, active ban) are not exceptions: the rate
limiter returns them as decisions and the middleware renders them as 429
plain-text responses. The errors here cover configuration and storage
failures.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

logger = logging.getLogger(__name__)

STORAGE_UNAVAILABLE_MESSAGE = "Service temporarily unavailable"


# =============================================================================
# Base Exception
# =============================================================================


class GuardCacheError(RuntimeError):
    """
    Base exception for all guardcache errors.

    Attributes:
        message: Human-readable error message.
        detail: Additional error details (optional).
        error_code: Machine-readable error code.
        request_id: Unique identifier for the request (optional).
    """

    def __init__(
        self,
        message: str,
        *,
        detail: str | None = None,
        error_code: str | None = None,
        request_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail
        self.error_code = error_code or self._default_error_code()
        self.request_id = request_id or self._generate_request_id()

    def _default_error_code(self) -> str:
        """Generate default error code from class name."""
        return f"guardcache_{self.__class__.__name__.lower()}"

    def _generate_request_id(self) -> str:
        return str(uuid.uuid4())

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response format."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.detail:
            result["detail"] = self.detail
        if self.request_id:
            result["request_id"] = self.request_id
        return result

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message}: {self.detail}"
        return self.message

    def log(self, level: int = logging.ERROR) -> None:
        """Log the exception with structured data."""
        logger.log(
            level,
            self.message,
            extra={
                "error_code": self.error_code,
                "detail": self.detail,
                "request_id": self.request_id,
                "exception_type": self.__class__.__name__,
            },
        )


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(GuardCacheError):
    """
    Raised when configuration is invalid or a required resource cannot be prepared.

    HTTP Status: 500 Internal Server Error
    """

    def __init__(
        self,
        message: str,
        *,
        setting_name: str | None = None,
        request_id: str | None = None,
    ) -> None:
        self.setting_name = setting_name
        detail = f"Missing or invalid setting: {setting_name}" if setting_name else None
        super().__init__(
            message,
            detail=detail,
            error_code="configuration_error",
            request_id=request_id,
        )


class UnsupportedCacheDriverError(ConfigurationError):
    """Raised when the configured cache driver is unknown."""

    def __init__(
        self,
        driver: str,
        *,
        request_id: str | None = None,
    ) -> None:
        super().__init__(
            f"Unsupported cache driver: {driver}",
            setting_name="cache_driver",
            request_id=request_id,
        )
        self.driver = driver


# =============================================================================
# Data Store Errors
# =============================================================================


class DataStoreError(GuardCacheError):
    """
    Raised when data store operation fails.

    HTTP Status: 500 Internal Server Error
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        path: str | None = None,
        request_id: str | None = None,
    ) -> None:
        self.operation = operation
        self.path = path
        detail_parts = []
        if operation:
            detail_parts.append(f"Operation: {operation}")
        if path:
            detail_parts.append(f"Path: {path}")
        detail = "; ".join(detail_parts) if detail_parts else None
        super().__init__(
            message,
            detail=detail,
            error_code="data_store_error",
            request_id=request_id,
        )


class CacheError(DataStoreError):
    """Raised when cache operation fails."""

    def __init__(
        self,
        message: str = "Cache operation failed",
        *,
        operation: str | None = None,
        cache_key: str | None = None,
        request_id: str | None = None,
    ) -> None:
        self.cache_key = cache_key
        super().__init__(
            message,
            operation=operation,
            request_id=request_id,
        )
        detail_parts = []
        if operation:
            detail_parts.append(f"Operation: {operation}")
        if cache_key:
            detail_parts.append(f"Key: {cache_key}")
        self.detail = "; ".join(detail_parts) if detail_parts else None


class DatabaseError(DataStoreError):
    """Raised when database operation fails."""

    def __init__(
        self,
        message: str = "Database operation failed",
        *,
        operation: str | None = None,
        table: str | None = None,
        path: str | None = None,
        request_id: str | None = None,
    ) -> None:
        self.table = table
        super().__init__(
            message,
            operation=operation,
            path=path,
            request_id=request_id,
        )
        detail_parts = []
        if operation:
            detail_parts.append(f"Operation: {operation}")
        if table:
            detail_parts.append(f"Table: {table}")
        if path:
            detail_parts.append(f"Path: {path}")
        self.detail = "; ".join(detail_parts) if detail_parts else None


# =============================================================================
# HTTP Exception Helpers
# =============================================================================


def exception_to_http_status(exc: GuardCacheError) -> int:
    """
    Map exception to appropriate HTTP status code.

    Args:
        exc: The exception to map.

    Returns:
        HTTP status code.
    """
    status_map = {
        UnsupportedCacheDriverError: 500,
        ConfigurationError: 500,
        CacheError: 500,
        DatabaseError: 500,
        DataStoreError: 500,
    }

    for exc_class, status in status_map.items():
        if isinstance(exc, exc_class):
            return status
    return 500


def handle_exception(exc: Exception, request_id: str | None = None) -> dict[str, Any]:
    """
    Convert any exception to standardized error response.

    Args:
        exc: The exception to handle.
        request_id: Request ID for tracing.

    Returns:
        Dictionary with error details.
    """
    if isinstance(exc, DataStoreError):
        # Storage details (paths, tables, keys) stay in the server log
        return {
            "error": exc.error_code,
            "message": STORAGE_UNAVAILABLE_MESSAGE,
            "request_id": request_id or exc.request_id,
        }

    if isinstance(exc, GuardCacheError):
        exc.request_id = request_id or exc.request_id
        return exc.to_dict()

    if isinstance(exc, PermissionError):
        return GuardCacheError(
            "Permission denied",
            detail=str(exc),
            error_code="permission_error",
            request_id=request_id,
        ).to_dict()

    logger.error(
        "Unhandled exception",
        extra={
            "exception_type": type(exc).__name__,
            "exception_message": str(exc),
            "request_id": request_id,
        },
        exc_info=True,
    )
    return GuardCacheError(
        "An unexpected error occurred",
        request_id=request_id,
    ).to_dict()
