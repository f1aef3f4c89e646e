"""MyAnimeList v2 API source (manga / comics).

Requires MAL_CLIENT_ID, sent as the ``X-MAL-CLIENT-ID`` header.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from inkshelf.env_settings import MyAnimeListEnvSettings
from inkshelf.models import ContentCategory, MetadataCandidate

from .base import DEFAULT_SEARCH_LIMIT, MetadataSource, SearchQuery
from .helpers import pick_by_role, strip_html

logger = logging.getLogger(__name__)

MAX_GENRES = 5
MANGA_FIELDS = ",".join(
    [
        "id",
        "title",
        "alternative_titles",
        "synopsis",
        "genres",
        "media_type",
        "num_volumes",
        "authors{first_name,last_name}",
        "main_picture",
        "start_date",
    ]
)


# =============================================================================
# Response Schemas
# =============================================================================


class MalAuthorNode(BaseModel):
    id: int | None = None
    first_name: str = ""
    last_name: str = ""

    model_config = {"extra": "ignore"}

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class MalAuthor(BaseModel):
    node: MalAuthorNode
    role: str = ""

    model_config = {"extra": "ignore"}


class MalGenre(BaseModel):
    id: int | None = None
    name: str

    model_config = {"extra": "ignore"}


class MalAlternativeTitles(BaseModel):
    synonyms: list[str] = Field(default_factory=list)
    en: str | None = None
    ja: str | None = None

    model_config = {"extra": "ignore"}


class MalPicture(BaseModel):
    medium: str | None = None
    large: str | None = None

    model_config = {"extra": "ignore"}


class MalManga(BaseModel):
    id: int
    title: str | None = None
    alternative_titles: MalAlternativeTitles | None = None
    synopsis: str | None = None
    genres: list[MalGenre] = Field(default_factory=list)
    num_volumes: int | None = None
    authors: list[MalAuthor] = Field(default_factory=list)
    main_picture: MalPicture | None = None
    start_date: str | None = None

    model_config = {"extra": "ignore"}


class MalEntry(BaseModel):
    node: MalManga

    model_config = {"extra": "ignore"}


class MalSearchResponse(BaseModel):
    data: list[MalEntry] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


def author_name(authors: list[MalAuthor]) -> str | None:
    """Story & Art > Story > first listed author."""
    author = pick_by_role(authors, lambda a: a.role, ("Story & Art", "Story"))
    if author is None:
        return None
    return author.node.full_name or None


# =============================================================================
# Source
# =============================================================================


class MyAnimeListSource(MetadataSource):
    """MyAnimeList manga search."""

    name = "myanimelist"
    label = "MyAnimeList"
    category = ContentCategory.COMIC
    priority = 20

    settings: MyAnimeListEnvSettings

    @property
    def configured(self) -> bool:
        return self.settings.enabled and bool(self.settings.client_id)

    async def search_title(
        self, query: SearchQuery, *, limit: int = DEFAULT_SEARCH_LIMIT
    ) -> list[MetadataCandidate]:
        logger.info("Searching MyAnimeList for manga: %s", query.title)
        data = await self.request_json(
            "GET",
            f"{self.settings.base_url}/manga",
            params={"q": query.title, "limit": limit, "fields": MANGA_FIELDS},
            headers={"X-MAL-CLIENT-ID": self.settings.client_id},
        )
        response: MalSearchResponse = self._parse(MalSearchResponse, data)
        return [c for c in (self.to_candidate(e.node) for e in response.data) if c is not None]

    def to_candidate(self, manga: MalManga) -> MetadataCandidate | None:
        if not manga.title:
            return None
        alt = manga.alternative_titles
        alternatives = [x for x in ([alt.en, alt.ja, *alt.synonyms] if alt else []) if x]
        picture = manga.main_picture
        return MetadataCandidate(
            source=self.name,
            external_id=str(manga.id),
            title=manga.title,
            author=author_name(manga.authors),
            description=strip_html(manga.synopsis) if manga.synopsis else None,
            genres=[g.name for g in manga.genres][:MAX_GENRES],
            publication_date=manga.start_date,
            cover_url=(picture.large or picture.medium) if picture else None,
            alternative_titles=alternatives,
        )
