"""inkshelf - self-hosted eBook and comic library: ingestion and metadata enrichment."""

from inkshelf.exceptions import (
    AuthenticationError,
    ConfigurationError,
    ConflictError,
    DuplicateRecordError,
    InkshelfError,
    InvalidTransitionError,
    InvalidVisibilityError,
    NotFoundError,
    RecordNotFoundError,
    ScanInProgressError,
    SourceClientError,
    SourceError,
    SourceNetworkError,
    SourceNotConfiguredError,
    SourceRateLimitedError,
    SourceResponseError,
    SourceTimeoutError,
    StorageError,
    UnknownSourceError,
    ValidationError,
)

__version__ = "0.4.0"

__all__ = [
    "__version__",
    # Base exception
    "InkshelfError",
    # Configuration
    "ConfigurationError",
    # Validation
    "ValidationError",
    "InvalidVisibilityError",
    # Lookups
    "NotFoundError",
    "RecordNotFoundError",
    "UnknownSourceError",
    # State conflicts
    "ConflictError",
    "DuplicateRecordError",
    "ScanInProgressError",
    "InvalidTransitionError",
    # Metadata sources
    "SourceError",
    "SourceTimeoutError",
    "SourceRateLimitedError",
    "SourceClientError",
    "SourceNetworkError",
    "SourceResponseError",
    "SourceNotConfiguredError",
    # Storage / auth
    "StorageError",
    "AuthenticationError",
]
