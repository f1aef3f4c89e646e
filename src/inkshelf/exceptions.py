"""
Inkshelf exception hierarchy.

Provides typed exceptions for better error handling and clearer error messages.

Exception Hierarchy:
    InkshelfError (base)
    ├── ConfigurationError - Missing or invalid settings
    ├── ValidationError - Rejected operator input
    │   └── InvalidVisibilityError - Visibility value outside public/private
    ├── NotFoundError - Lookup of an unknown identifier
    │   ├── RecordNotFoundError - Unknown content record id
    │   └── UnknownSourceError - Unknown metadata source name
    ├── ConflictError - Request rejected because of current state
    │   ├── DuplicateRecordError - File path already ingested
    │   ├── ScanInProgressError - Force scan already running
    │   └── InvalidTransitionError - Lifecycle transition not allowed
    ├── SourceError - External metadata catalog failures
    │   ├── SourceTimeoutError - Request exceeded its timeout
    │   ├── SourceRateLimitedError - Local or remote rate limit exhausted
    │   ├── SourceClientError - 4xx response (never retried)
    │   ├── SourceNetworkError - Connection failures and 5xx responses
    │   ├── SourceResponseError - Unparseable response body
    │   └── SourceNotConfiguredError - Missing API key / client id
    ├── StorageError - Database or asset storage failures
    └── AuthenticationError - Missing or invalid subscriber session
"""

from __future__ import annotations

from typing import Any


class InkshelfError(Exception):
    """Base exception for all inkshelf errors."""

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        """
        Initialize inkshelf exception.

        Args:
            message: Human-readable error message
            details: Optional structured error details for logging/debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(InkshelfError):
    """Configuration file or settings error."""

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details=details)
        self.field = field


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(InkshelfError):
    """Operator input failed validation."""

    def __init__(
        self,
        message: str,
        *,
        errors: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if errors:
            details["errors"] = errors
        super().__init__(message, details=details)
        self.errors = errors or []


class InvalidVisibilityError(ValidationError):
    """Visibility value is not one of public/private."""

    def __init__(self, value: object) -> None:
        super().__init__(
            f"Invalid visibility: {value!r} (expected 'public' or 'private')",
            details={"value": str(value)},
        )
        self.value = value


# =============================================================================
# Lookup Errors
# =============================================================================


class NotFoundError(InkshelfError):
    """Requested entity does not exist."""

    pass


class RecordNotFoundError(NotFoundError):
    """No content record with the given id."""

    def __init__(self, record_id: int) -> None:
        super().__init__(f"Content record {record_id} not found", details={"record_id": record_id})
        self.record_id = record_id


class UnknownSourceError(NotFoundError):
    """No metadata source registered under the given name."""

    def __init__(self, source: str, available: list[str] | None = None) -> None:
        details: dict[str, Any] = {"source": source}
        if available is not None:
            details["available"] = available
        super().__init__(f"Unknown metadata source: {source}", details=details)
        self.source = source


# =============================================================================
# Conflict Errors
# =============================================================================


class ConflictError(InkshelfError):
    """Request conflicts with the current state of the library."""

    pass


class DuplicateRecordError(ConflictError):
    """A content record already exists for this file path."""

    def __init__(self, file_path: str) -> None:
        super().__init__(
            f"Content record already exists for {file_path}",
            details={"file_path": file_path},
        )
        self.file_path = file_path


class ScanInProgressError(ConflictError):
    """A force scan is already running."""

    def __init__(self) -> None:
        super().__init__("Scan already in progress")


class InvalidTransitionError(ConflictError):
    """Lifecycle status change is not permitted."""

    def __init__(self, record_id: int, current: str, target: str) -> None:
        super().__init__(
            f"Cannot move record {record_id} from {current} to {target}",
            details={"record_id": record_id, "current": current, "target": target},
        )
        self.current = current
        self.target = target


# =============================================================================
# Metadata Source Errors
# =============================================================================


class SourceError(InkshelfError):
    """External metadata catalog request failed."""

    #: Short outcome label used in quarantine failure reasons
    outcome: str = "error"

    def __init__(
        self,
        message: str,
        *,
        source: str | None = None,
        url: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if source:
            details["source"] = source
        if url:
            details["url"] = url
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, details=details)
        self.source = source
        self.url = url
        self.status_code = status_code


class SourceTimeoutError(SourceError):
    """Request did not complete within the configured timeout."""

    outcome = "timeout"


class SourceRateLimitedError(SourceError):
    """Rate limit exhausted (local budget or HTTP 429)."""

    outcome = "rate-limited"

    def __init__(
        self,
        message: str,
        *,
        retry_after: float | None = None,
        source: str | None = None,
        url: str | None = None,
        status_code: int | None = None,
    ) -> None:
        details: dict[str, Any] = {}
        if retry_after is not None:
            details["retry_after"] = retry_after
        super().__init__(
            message, source=source, url=url, status_code=status_code, details=details
        )
        self.retry_after = retry_after


class SourceClientError(SourceError):
    """Source rejected the request with a 4xx response."""

    outcome = "client error"


class SourceNetworkError(SourceError):
    """Connection failure or 5xx response."""

    outcome = "network error"


class SourceResponseError(SourceError):
    """Response body could not be parsed into the expected shape."""

    outcome = "invalid response"


class SourceNotConfiguredError(SourceError):
    """Source requires credentials that are not configured."""

    outcome = "not configured"


# =============================================================================
# Storage / Auth Errors
# =============================================================================


class StorageError(InkshelfError):
    """Database or asset storage failure."""

    pass


class AuthenticationError(InkshelfError):
    """Subscriber session is missing or invalid."""

    pass
