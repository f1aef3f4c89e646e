"""Google Books search source (books).

Requires GOOGLE_BOOKS_API_KEY; without it the source reports itself as not
configured and is skipped by automatic enrichment.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from pydantic import BaseModel, Field

from inkshelf.env_settings import GoogleBooksEnvSettings
from inkshelf.models import ContentCategory, MetadataCandidate

from .base import DEFAULT_SEARCH_LIMIT, MetadataSource, SearchQuery

logger = logging.getLogger(__name__)

MAX_GENRES = 5
COVER_SIZES = ("extraLarge", "large", "medium", "thumbnail", "smallThumbnail")


# =============================================================================
# Response Schemas
# =============================================================================


class IndustryIdentifier(BaseModel):
    type: str
    identifier: str

    model_config = {"extra": "ignore"}


class VolumeInfo(BaseModel):
    """``volumeInfo`` block of a Google Books volume."""

    title: str | None = None
    subtitle: str | None = None
    authors: list[str] = Field(default_factory=list)
    publisher: str | None = None
    published_date: str | None = Field(default=None, alias="publishedDate")
    description: str | None = None
    industry_identifiers: list[IndustryIdentifier] = Field(
        default_factory=list, alias="industryIdentifiers"
    )
    categories: list[str] = Field(default_factory=list)
    image_links: dict[str, str] = Field(default_factory=dict, alias="imageLinks")
    language: str | None = None

    model_config = {"extra": "ignore", "populate_by_name": True}


class Volume(BaseModel):
    id: str
    volume_info: VolumeInfo = Field(alias="volumeInfo")

    model_config = {"extra": "ignore", "populate_by_name": True}


class VolumesResponse(BaseModel):
    total_items: int = Field(default=0, alias="totalItems")
    items: list[Volume] = Field(default_factory=list)

    model_config = {"extra": "ignore", "populate_by_name": True}


# =============================================================================
# Helpers
# =============================================================================


def sanitize_query_term(term: str) -> str:
    """Strip characters with meaning in Google's query syntax."""
    return re.sub(r"\s+", " ", re.sub(r"[+:]", " ", term)).strip()


def pick_isbn(identifiers: list[IndustryIdentifier]) -> str | None:
    """Prefer ISBN-13 over ISBN-10."""
    by_type = {i.type: i.identifier for i in identifiers}
    return by_type.get("ISBN_13") or by_type.get("ISBN_10")


def best_cover_url(image_links: dict[str, str]) -> str | None:
    """Largest available image, forced to https, without the page-curl effect."""
    url = next((image_links[size] for size in COVER_SIZES if image_links.get(size)), None)
    if not url:
        return None
    url = re.sub(r"^http://", "https://", url)
    url = url.replace("&edge=curl", "")
    return re.sub(r"zoom=\d", "zoom=1", url)


# =============================================================================
# Source
# =============================================================================


class GoogleBooksSource(MetadataSource):
    """Google Books volumes search."""

    name = "googlebooks"
    label = "Google Books"
    category = ContentCategory.BOOK
    priority = 20
    supports_isbn = True

    client_error_messages = {403: "API key invalid or quota exceeded"}

    settings: GoogleBooksEnvSettings

    @property
    def configured(self) -> bool:
        return self.settings.enabled and bool(self.settings.api_key)

    async def search_isbn(self, isbn: str) -> list[MetadataCandidate]:
        logger.info("Searching Google Books by ISBN: %s", isbn)
        return await self._volumes(f"isbn:{isbn}", max_results=1)

    async def search_title(
        self, query: SearchQuery, *, limit: int = DEFAULT_SEARCH_LIMIT
    ) -> list[MetadataCandidate]:
        logger.info("Searching Google Books by title: %s", query)
        q = f"intitle:{sanitize_query_term(query.title or '')}"
        if query.author:
            q += f"+inauthor:{sanitize_query_term(query.author)}"
        return await self._volumes(q, max_results=limit)

    async def _volumes(self, q: str, *, max_results: int) -> list[MetadataCandidate]:
        params: dict[str, Any] = {
            "q": q,
            "key": self.settings.api_key,
            "maxResults": max_results,
            "printType": "books",
        }
        data = await self.request_json("GET", f"{self.settings.base_url}/volumes", params=params)
        response: VolumesResponse = self._parse(VolumesResponse, data)
        return [c for c in (self.to_candidate(v) for v in response.items) if c is not None]

    def to_candidate(self, volume: Volume) -> MetadataCandidate | None:
        info = volume.volume_info
        if not info.title:
            return None
        return MetadataCandidate(
            source=self.name,
            external_id=volume.id,
            title=info.title,
            author=", ".join(info.authors) or None,
            description=info.description,
            genres=info.categories[:MAX_GENRES],
            publication_date=info.published_date,
            publisher=info.publisher,
            isbn=pick_isbn(info.industry_identifiers),
            language=info.language,
            cover_url=best_cover_url(info.image_links),
        )
