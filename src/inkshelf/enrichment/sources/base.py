"""
Base class for external metadata sources.

Each source owns:
- an httpx.AsyncClient with a bounded per-request timeout
- a process-wide RateLimiter (one budget shared by automatic and manual searches)
- a tenacity retrier for transient failures (timeouts, connection errors,
  5xx, 429); 4xx client errors are never retried

HTTP failures are translated into the SourceError hierarchy so the
enrichment orchestrator can record a per-source outcome.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, ClassVar

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from inkshelf.env_settings import SourceEnvSettings
from inkshelf.exceptions import (
    SourceClientError,
    SourceNetworkError,
    SourceNotConfiguredError,
    SourceRateLimitedError,
    SourceResponseError,
    SourceTimeoutError,
)
from inkshelf.models import ContentCategory, ContentRecord, MetadataCandidate

from ..ratelimit import RateLimiter
from ...utils.fuzzy import clean_title
from ...utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 5


@dataclass(frozen=True)
class SearchQuery:
    """What to look for. ISBN lookups take precedence where supported."""

    title: str | None = None
    author: str | None = None
    isbn: str | None = None

    @classmethod
    def for_record(cls, record: ContentRecord) -> SearchQuery:
        """Build the automatic query. Comic titles lose volume and tag noise."""
        title = record.title
        if record.category is ContentCategory.COMIC:
            title = clean_title(title) or title
        return cls(title=title, author=record.author, isbn=record.isbn)

    def __str__(self) -> str:
        parts = [p for p in (self.title, self.author) if p]
        if self.isbn:
            parts.append(f"isbn:{self.isbn}")
        return " / ".join(parts)


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def is_transient(exc: BaseException) -> bool:
    """Retry policy: timeouts, network/5xx errors and remote 429s."""
    if isinstance(exc, (SourceTimeoutError, SourceNetworkError)):
        return True
    return isinstance(exc, SourceRateLimitedError) and exc.status_code == 429


class MetadataSource:
    """Base class for HTTP/GraphQL catalog adapters.

    Subclasses set the class attributes and implement search_title(); ISBN
    capable sources also override search_isbn().

    Attributes:
        name: Registry key ("openlibrary", "anilist", ...)
        label: Human-readable name used in failure reasons
        category: Content category this source serves
        priority: Lower = tried first
        supports_isbn: search_isbn() is meaningful
    """

    name: ClassVar[str] = "source"
    label: ClassVar[str] = "Source"
    category: ClassVar[ContentCategory] = ContentCategory.BOOK
    priority: ClassVar[int] = 100
    supports_isbn: ClassVar[bool] = False

    # Optional friendlier messages for specific 4xx codes
    client_error_messages: ClassVar[dict[int, str]] = {}

    def __init__(
        self,
        settings: SourceEnvSettings,
        *,
        client: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
        max_wait: float | None = 5.0,
        retry_base_delay: float = 1.0,
    ) -> None:
        """
        Initialize source adapter.

        Args:
            settings: Per-source settings (URLs, limits, timeout, retries)
            client: Shared/mocked client; created (and owned) if None
            rate_limiter: Override the limiter built from settings
            max_wait: Longest wait for a rate-limit slot before failing
            retry_base_delay: First backoff delay in seconds
        """
        self.settings = settings
        self.max_wait = max_wait
        self.rate_limiter = rate_limiter or RateLimiter(
            settings.rate_limit, settings.rate_window, name=self.label
        )
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=settings.search_timeout,
            headers={"User-Agent": settings.user_agent, "Accept": "application/json"},
            follow_redirects=True,
        )
        self._request = retry_with_backoff(
            max_attempts=settings.max_retries,
            base_delay=retry_base_delay,
            max_delay=max(retry_base_delay * 8, 1.0),
            jitter=retry_base_delay / 2,
            retry_if=is_transient,
            honor_retry_after=True,
            logger_instance=logger,
        )(self._request_once)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, priority={self.priority})"

    @property
    def configured(self) -> bool:
        """Whether the source is enabled and required credentials are present."""
        return self.settings.enabled

    # =========================================================================
    # Public search API
    # =========================================================================

    async def search(
        self, query: SearchQuery, *, limit: int = DEFAULT_SEARCH_LIMIT
    ) -> list[MetadataCandidate]:
        """Search by ISBN when possible, then by title/author.

        Raises:
            SourceError: Any failure talking to the source
        """
        self._require_configured()
        if query.isbn and self.supports_isbn:
            candidates = await self.search_isbn(query.isbn)
            if candidates:
                return candidates
        if not query.title:
            return []
        return await self.search_title(query, limit=limit)

    async def search_isbn(self, isbn: str) -> list[MetadataCandidate]:
        """Exact lookup by ISBN. Sources without ISBN support return []."""
        return []

    async def search_title(
        self, query: SearchQuery, *, limit: int = DEFAULT_SEARCH_LIMIT
    ) -> list[MetadataCandidate]:
        raise NotImplementedError

    async def complete(self, candidate: MetadataCandidate) -> MetadataCandidate:
        """Fill fields the search endpoint does not return (e.g. descriptions).

        Called once for the selected match only. Default: no-op.
        """
        return candidate

    async def aclose(self) -> None:
        """Close the HTTP client if this source created it."""
        if self._owns_client:
            await self._client.aclose()

    # =========================================================================
    # HTTP helpers
    # =========================================================================

    def _require_configured(self) -> None:
        if not self.configured:
            raise SourceNotConfiguredError(f"{self.label} is not configured", source=self.name)

    async def request_json(self, method: str, url: str, **kwargs: Any) -> Any:
        """Send a request (rate limited, retried) and decode the JSON body."""
        response = await self._request(method, url, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise SourceResponseError(
                f"{self.label} returned invalid JSON", source=self.name, url=url
            ) from e

    async def _request_once(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        await self.rate_limiter.acquire(self.max_wait)
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise SourceTimeoutError(
                f"{self.label} request timed out", source=self.name, url=url
            ) from e
        except httpx.TransportError as e:
            raise SourceNetworkError(
                f"{self.label} connection failed: {e}", source=self.name, url=url
            ) from e

        status = response.status_code
        if status == 429:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            logger.warning("%s rate limited (429), retry after %s", self.label, retry_after)
            raise SourceRateLimitedError(
                f"{self.label} rate limited",
                retry_after=retry_after,
                source=self.name,
                url=url,
                status_code=status,
            )
        if 400 <= status < 500:
            message = self.client_error_messages.get(status, f"HTTP {status}")
            if status in (401, 403):
                logger.warning("%s authentication failed (%d)", self.label, status)
            raise SourceClientError(
                f"{self.label}: {message}", source=self.name, url=url, status_code=status
            )
        if status >= 500:
            raise SourceNetworkError(
                f"{self.label} server error (HTTP {status})",
                source=self.name,
                url=url,
                status_code=status,
            )
        return response

    def _parse(self, model: type[BaseModel], data: Any) -> Any:
        """Validate a response payload against a pydantic schema."""
        try:
            return model.model_validate(data)
        except PydanticValidationError as e:
            raise SourceResponseError(
                f"{self.label} returned an unexpected response: {e.error_count()} errors",
                source=self.name,
            ) from e
