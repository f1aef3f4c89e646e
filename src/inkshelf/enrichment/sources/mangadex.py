"""MangaDex source (manga / comics).

MangaDex answers abusive clients with 403 (DDoS protection); a 403 is never
retried so the client does not dig itself into an IP ban.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field

from inkshelf.env_settings import MangaDexEnvSettings
from inkshelf.models import ContentCategory, MetadataCandidate

from .base import DEFAULT_SEARCH_LIMIT, MetadataSource, SearchQuery

logger = logging.getLogger(__name__)

MAX_GENRES = 5
CONTENT_RATINGS = ("safe", "suggestive", "erotica")
INCLUDES = ("author", "artist", "cover_art")


# =============================================================================
# Response Schemas
# =============================================================================


class MangaDexTagAttributes(BaseModel):
    name: dict[str, str] = Field(default_factory=dict)
    group: str = ""

    model_config = {"extra": "ignore"}


class MangaDexTag(BaseModel):
    id: str
    attributes: MangaDexTagAttributes = Field(default_factory=MangaDexTagAttributes)

    model_config = {"extra": "ignore"}


class MangaDexAttributes(BaseModel):
    title: dict[str, str] = Field(default_factory=dict)
    alt_titles: list[dict[str, str]] = Field(default_factory=list, alias="altTitles")
    description: dict[str, str] = Field(default_factory=dict)
    original_language: str | None = Field(default=None, alias="originalLanguage")
    tags: list[MangaDexTag] = Field(default_factory=list)
    year: int | None = None

    model_config = {"extra": "ignore", "populate_by_name": True}


class MangaDexRelationship(BaseModel):
    id: str
    type: str
    attributes: dict[str, Any] | None = None

    model_config = {"extra": "ignore"}


class MangaDexManga(BaseModel):
    id: str
    attributes: MangaDexAttributes = Field(default_factory=MangaDexAttributes)
    relationships: list[MangaDexRelationship] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


class MangaDexSearchResponse(BaseModel):
    result: str = "ok"
    data: list[MangaDexManga] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


# =============================================================================
# Helpers
# =============================================================================


def localized(values: dict[str, str] | None, prefer: str = "en") -> str | None:
    """Preferred-language value, else the first one present."""
    if not values:
        return None
    if values.get(prefer):
        return values[prefer]
    return next((v for v in values.values() if v), None)


def relationship_attr(
    relationships: list[MangaDexRelationship], rel_type: str, attr: str
) -> str | None:
    for rel in relationships:
        if rel.type == rel_type and rel.attributes and rel.attributes.get(attr):
            return str(rel.attributes[attr])
    return None


def extract_genres(tags: list[MangaDexTag]) -> list[str]:
    """Only tags in the ``genre`` group (not themes, formats or content warnings)."""
    names = (localized(t.attributes.name) for t in tags if t.attributes.group == "genre")
    return [n for n in names if n][:MAX_GENRES]


# =============================================================================
# Source
# =============================================================================


class MangaDexSource(MetadataSource):
    """MangaDex manga search with author and cover reference expansion."""

    name = "mangadex"
    label = "MangaDex"
    category = ContentCategory.COMIC
    priority = 30

    client_error_messages = {403: "access denied (DDoS protection)"}

    settings: MangaDexEnvSettings

    def cover_url(self, manga_id: str, file_name: str | None) -> str | None:
        if not file_name:
            return None
        return f"{self.settings.cover_base_url}/{manga_id}/{file_name}"

    async def search_title(
        self, query: SearchQuery, *, limit: int = DEFAULT_SEARCH_LIMIT
    ) -> list[MetadataCandidate]:
        logger.info("Searching MangaDex for manga: %s", query.title)
        params: list[tuple[str, str | int]] = [("title", query.title or ""), ("limit", limit)]
        params += [("includes[]", inc) for inc in INCLUDES]
        params += [("contentRating[]", rating) for rating in CONTENT_RATINGS]
        params.append(("order[relevance]", "desc"))

        data = await self.request_json("GET", f"{self.settings.base_url}/manga", params=params)
        response: MangaDexSearchResponse = self._parse(MangaDexSearchResponse, data)
        return [c for c in (self.to_candidate(m) for m in response.data) if c is not None]

    def to_candidate(self, manga: MangaDexManga) -> MetadataCandidate | None:
        attrs = manga.attributes
        title = localized(attrs.title)
        if not title:
            return None
        alternatives = [v for alt in attrs.alt_titles for v in alt.values() if v]
        return MetadataCandidate(
            source=self.name,
            external_id=manga.id,
            title=title,
            author=relationship_attr(manga.relationships, "author", "name"),
            description=localized(attrs.description),
            genres=extract_genres(attrs.tags),
            publication_date=str(attrs.year) if attrs.year else None,
            language=attrs.original_language,
            cover_url=self.cover_url(
                manga.id, relationship_attr(manga.relationships, "cover_art", "fileName")
            ),
            alternative_titles=alternatives,
        )
