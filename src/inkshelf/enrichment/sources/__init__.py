"""Metadata source adapters.

Book sources: OpenLibrary, Google Books.
Comic sources: AniList, MyAnimeList, MangaDex.
"""

from __future__ import annotations

from .anilist import AniListSource
from .base import MetadataSource, SearchQuery
from .googlebooks import GoogleBooksSource
from .mangadex import MangaDexSource
from .myanimelist import MyAnimeListSource
from .openlibrary import OpenLibrarySource

__all__ = [
    "AniListSource",
    "GoogleBooksSource",
    "MangaDexSource",
    "MetadataSource",
    "MyAnimeListSource",
    "OpenLibrarySource",
    "SearchQuery",
]
