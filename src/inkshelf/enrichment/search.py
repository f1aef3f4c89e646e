"""Operator-facing metadata search (manual enrichment)."""

from __future__ import annotations

import logging
import re

from inkshelf.exceptions import SourceError, UnknownSourceError, ValidationError
from inkshelf.models import ContentCategory, MetadataCandidate

from .registry import SourceRegistry
from .sources.base import DEFAULT_SEARCH_LIMIT, MetadataSource, SearchQuery

logger = logging.getLogger(__name__)

# ISBN-13, or ISBN-10 whose check digit may be X
_ISBN_RE = re.compile(r"^(?:\d{13}|\d{9}[\dX])$")


class MetadataSearchService:
    """Search one named source on behalf of an operator.

    Searches draw from the same per-source rate limiter as automatic
    enrichment.
    """

    def __init__(self, registry: SourceRegistry) -> None:
        self.registry = registry

    async def search_metadata(
        self,
        query: str,
        source: str,
        *,
        author: str | None = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> list[MetadataCandidate]:
        """Search ``source`` for ``query`` (a title, or an ISBN for book sources).

        Source failures are logged and produce an empty result.

        Raises:
            ValidationError: Empty query
            UnknownSourceError: No source registered under that name
        """
        query = (query or "").strip()
        if not query:
            raise ValidationError("Search query must not be empty")

        adapter = self.registry.get(source)
        if adapter is None:
            raise UnknownSourceError(source, available=self.registry.names())

        search_query = self._build_query(adapter, query, author)
        try:
            results = await adapter.search(search_query, limit=limit)
        except SourceError as e:
            logger.warning("Manual search on %s failed: %s", adapter.label, e)
            return []
        logger.info("Manual search on %s for %r: %d result(s)", adapter.label, query, len(results))
        return results

    @staticmethod
    def _build_query(adapter: MetadataSource, query: str, author: str | None) -> SearchQuery:
        compact = query.replace("-", "").replace(" ", "").upper()
        if adapter.supports_isbn and _ISBN_RE.match(compact):
            return SearchQuery(isbn=compact)
        return SearchQuery(title=query, author=author)

    def list_available_sources(
        self, category: ContentCategory | str | None = None
    ) -> list[dict[str, str | int]]:
        """Configured sources, optionally restricted to one category."""
        if isinstance(category, str):
            category = ContentCategory(category)
        return [
            {
                "name": s.name,
                "label": s.label,
                "contentType": s.category.value,
                "priority": s.priority,
            }
            for s in self.registry.available(category)
        ]
