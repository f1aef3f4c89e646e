"""OpenLibrary search source (books).

Search endpoint: ``GET /search.json`` (no API key). Descriptions are not part
of search results and come from the Works API (``GET /works/<id>.json``) for
the selected match only.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field

from inkshelf.env_settings import OpenLibraryEnvSettings
from inkshelf.exceptions import SourceError
from inkshelf.models import ContentCategory, MetadataCandidate

from .base import DEFAULT_SEARCH_LIMIT, MetadataSource, SearchQuery

logger = logging.getLogger(__name__)

SEARCH_FIELDS = "key,title,author_name,author_key,first_publish_year,cover_i,subject,isbn,publisher,language"
MAX_GENRES = 5


# =============================================================================
# Response Schemas
# =============================================================================


class OpenLibraryDoc(BaseModel):
    """One document from /search.json."""

    key: str
    title: str | None = None
    author_name: list[str] = Field(default_factory=list)
    first_publish_year: int | None = None
    cover_i: int | None = None
    subject: list[str] = Field(default_factory=list)
    isbn: list[str] = Field(default_factory=list)
    publisher: list[str] = Field(default_factory=list)
    language: list[str] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


class OpenLibrarySearchResponse(BaseModel):
    num_found: int = Field(default=0, alias="numFound")
    docs: list[OpenLibraryDoc] = Field(default_factory=list)

    model_config = {"extra": "ignore", "populate_by_name": True}


def work_description(data: dict[str, Any]) -> str | None:
    """Works API descriptions are a string or ``{"type": ..., "value": ...}``."""
    desc = data.get("description")
    if isinstance(desc, str):
        return desc
    if isinstance(desc, dict) and isinstance(desc.get("value"), str):
        return desc["value"]
    return None


# =============================================================================
# Source
# =============================================================================


class OpenLibrarySource(MetadataSource):
    """OpenLibrary catalog search (ISBN and title/author)."""

    name = "openlibrary"
    label = "OpenLibrary"
    category = ContentCategory.BOOK
    priority = 10
    supports_isbn = True

    settings: OpenLibraryEnvSettings

    def cover_url(self, cover_id: int | None = None, isbn: str | None = None, size: str = "L") -> str | None:
        """Cover URL by cover id, falling back to ISBN. ``default=false`` makes misses 404."""
        base = self.settings.covers_base_url
        if cover_id:
            return f"{base}/b/id/{cover_id}-{size}.jpg?default=false"
        if isbn:
            return f"{base}/b/isbn/{isbn}-{size}.jpg?default=false"
        return None

    async def search_isbn(self, isbn: str) -> list[MetadataCandidate]:
        logger.info("Searching OpenLibrary by ISBN: %s", isbn)
        return await self._search({"isbn": isbn, "limit": 1})

    async def search_title(
        self, query: SearchQuery, *, limit: int = DEFAULT_SEARCH_LIMIT
    ) -> list[MetadataCandidate]:
        logger.info("Searching OpenLibrary by title: %s", query)
        params: dict[str, Any] = {"title": query.title, "limit": limit}
        if query.author:
            params["author"] = query.author
        return await self._search(params)

    async def _search(self, params: dict[str, Any]) -> list[MetadataCandidate]:
        params["fields"] = SEARCH_FIELDS
        data = await self.request_json("GET", f"{self.settings.base_url}/search.json", params=params)
        response: OpenLibrarySearchResponse = self._parse(OpenLibrarySearchResponse, data)
        if not response.docs:
            logger.debug("No OpenLibrary results for %s", params)
            return []
        return [c for c in (self.to_candidate(doc) for doc in response.docs) if c is not None]

    def to_candidate(self, doc: OpenLibraryDoc) -> MetadataCandidate | None:
        """Normalize a search document. Documents without a title are dropped."""
        if not doc.title:
            return None
        isbn = doc.isbn[0] if doc.isbn else None
        return MetadataCandidate(
            source=self.name,
            external_id=doc.key,
            title=doc.title,
            author=", ".join(doc.author_name) or None,
            genres=doc.subject[:MAX_GENRES],
            publication_date=f"{doc.first_publish_year}-01-01" if doc.first_publish_year else None,
            publisher=doc.publisher[0] if doc.publisher else None,
            isbn=isbn,
            language=doc.language[0] if doc.language else None,
            cover_url=self.cover_url(doc.cover_i),
        )

    async def complete(self, candidate: MetadataCandidate) -> MetadataCandidate:
        """Fetch the work description; failures leave the candidate unchanged."""
        if candidate.description or not candidate.external_id.startswith("/works/"):
            return candidate
        try:
            data = await self.request_json("GET", f"{self.settings.base_url}{candidate.external_id}.json")
        except SourceError as e:
            logger.warning("Failed to fetch work description for %s: %s", candidate.external_id, e)
            return candidate
        description = work_description(data) if isinstance(data, dict) else None
        if not description:
            return candidate
        return candidate.model_copy(update={"description": description})
