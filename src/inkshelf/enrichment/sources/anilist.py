"""AniList GraphQL source (manga / comics)."""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from inkshelf.env_settings import AniListEnvSettings
from inkshelf.exceptions import SourceRateLimitedError, SourceResponseError
from inkshelf.models import ContentCategory, MetadataCandidate

from .base import DEFAULT_SEARCH_LIMIT, MetadataSource, SearchQuery
from .helpers import format_fuzzy_date, pick_by_role, strip_html

logger = logging.getLogger(__name__)

MAX_GENRES = 5

MANGA_SEARCH_QUERY = """
query SearchManga($search: String!, $page: Int, $perPage: Int) {
  Page(page: $page, perPage: $perPage) {
    media(search: $search, type: MANGA, sort: SEARCH_MATCH) {
      id
      title { romaji english native }
      description(asHtml: false)
      genres
      coverImage { extraLarge large medium }
      volumes
      format
      staff(sort: RELEVANCE, perPage: 5) {
        edges { role node { name { full native } } }
      }
      startDate { year month day }
      synonyms
    }
  }
}
"""


# =============================================================================
# Response Schemas
# =============================================================================


class AniListTitle(BaseModel):
    romaji: str | None = None
    english: str | None = None
    native: str | None = None

    model_config = {"extra": "ignore"}


class AniListStaffName(BaseModel):
    full: str | None = None
    native: str | None = None

    model_config = {"extra": "ignore"}


class AniListStaffNode(BaseModel):
    name: AniListStaffName = Field(default_factory=AniListStaffName)

    model_config = {"extra": "ignore"}


class AniListStaffEdge(BaseModel):
    role: str = ""
    node: AniListStaffNode = Field(default_factory=AniListStaffNode)

    model_config = {"extra": "ignore"}


class AniListStaff(BaseModel):
    edges: list[AniListStaffEdge] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


class AniListFuzzyDate(BaseModel):
    year: int | None = None
    month: int | None = None
    day: int | None = None

    model_config = {"extra": "ignore"}


class AniListCoverImage(BaseModel):
    extra_large: str | None = Field(default=None, alias="extraLarge")
    large: str | None = None
    medium: str | None = None

    model_config = {"extra": "ignore", "populate_by_name": True}


class AniListMedia(BaseModel):
    """One ``Media`` node from the search query."""

    id: int
    title: AniListTitle = Field(default_factory=AniListTitle)
    description: str | None = None
    genres: list[str] = Field(default_factory=list)
    cover_image: AniListCoverImage | None = Field(default=None, alias="coverImage")
    volumes: int | None = None
    staff: AniListStaff | None = None
    start_date: AniListFuzzyDate | None = Field(default=None, alias="startDate")
    synonyms: list[str] = Field(default_factory=list)

    model_config = {"extra": "ignore", "populate_by_name": True}


class AniListPage(BaseModel):
    media: list[AniListMedia] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


class AniListData(BaseModel):
    page: AniListPage | None = Field(default=None, alias="Page")

    model_config = {"extra": "ignore", "populate_by_name": True}


class AniListResponse(BaseModel):
    data: AniListData | None = None
    errors: list[dict] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


# =============================================================================
# Helpers
# =============================================================================


def extract_author(edges: list[AniListStaffEdge]) -> str | None:
    """Story & Art > Story > Original Creator > Art > first staff member."""
    edge = pick_by_role(edges, lambda e: e.role)
    if edge is None:
        return None
    return edge.node.name.full or edge.node.name.native


def cover_url(cover: AniListCoverImage | None) -> str | None:
    if cover is None:
        return None
    return cover.extra_large or cover.large or cover.medium


# =============================================================================
# Source
# =============================================================================


class AniListSource(MetadataSource):
    """AniList manga search via GraphQL POST."""

    name = "anilist"
    label = "AniList"
    category = ContentCategory.COMIC
    priority = 10

    settings: AniListEnvSettings

    async def search_title(
        self, query: SearchQuery, *, limit: int = DEFAULT_SEARCH_LIMIT
    ) -> list[MetadataCandidate]:
        logger.info("Searching AniList for manga: %s", query.title)
        payload = {
            "query": MANGA_SEARCH_QUERY,
            "variables": {"search": query.title, "page": 1, "perPage": limit},
        }
        data = await self.request_json("POST", self.settings.base_url, json=payload)
        response: AniListResponse = self._parse(AniListResponse, data)
        self._raise_for_graphql_errors(response)

        if response.data is None or response.data.page is None:
            return []
        return [c for c in (self.to_candidate(m) for m in response.data.page.media) if c is not None]

    def _raise_for_graphql_errors(self, response: AniListResponse) -> None:
        """GraphQL reports failures (including rate limits) in a 200 body."""
        if not response.errors:
            return
        if any(e.get("status") == 429 for e in response.errors):
            logger.warning("AniList GraphQL rate limited")
            raise SourceRateLimitedError(
                "AniList rate limited", source=self.name, status_code=429
            )
        messages = ", ".join(str(e.get("message", "unknown error")) for e in response.errors)
        raise SourceResponseError(f"AniList GraphQL errors: {messages}", source=self.name)

    def to_candidate(self, media: AniListMedia) -> MetadataCandidate | None:
        t = media.title
        title = t.english or t.romaji or t.native
        if not title:
            return None
        alternatives = [x for x in (t.romaji, t.native, *media.synonyms) if x and x != title]
        start = media.start_date
        return MetadataCandidate(
            source=self.name,
            external_id=str(media.id),
            title=title,
            author=extract_author(media.staff.edges if media.staff else []),
            description=strip_html(media.description) if media.description else None,
            genres=media.genres[:MAX_GENRES],
            publication_date=format_fuzzy_date(start.year, start.month, start.day) if start else None,
            cover_url=cover_url(media.cover_image),
            alternative_titles=alternatives,
        )
