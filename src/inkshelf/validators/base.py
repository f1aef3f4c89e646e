"""Shared types for container validators."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import PurePosixPath
from typing import Any

IMAGE_EXTENSIONS: frozenset[str] = frozenset({".jpg", ".jpeg", ".png", ".gif", ".webp"})

NO_IMAGES_REASON = (
    "No image files found in archive - archive must contain at least one image "
    "(.jpg, .jpeg, .png, .gif, .webp)"
)


def is_image(name: str) -> bool:
    """Check if an archive member name has a supported image extension."""
    return PurePosixPath(name).suffix.lower() in IMAGE_EXTENSIONS


def is_comic_info(name: str) -> bool:
    """ComicInfo.xml at the archive root or in any subfolder (case-insensitive)."""
    lowered = name.replace("\\", "/").lower()
    return lowered == "comicinfo.xml" or lowered.endswith("/comicinfo.xml")


@dataclass
class EmbeddedMetadata:
    """Seed fields read from OPF or ComicInfo.xml."""

    title: str | None = None
    author: str | None = None
    description: str | None = None
    publisher: str | None = None
    language: str | None = None
    isbn: str | None = None
    genres: list[str] = field(default_factory=list)
    publication_date: str | None = None
    series: str | None = None
    volume: int | None = None

    def as_fields(self) -> dict[str, Any]:
        """Non-empty values keyed by content record column name."""
        return {f.name: value for f in fields(self) if (value := getattr(self, f.name))}

    @property
    def is_empty(self) -> bool:
        return not self.as_fields()


@dataclass
class ValidationResult:
    """Outcome of validating one container.

    Attributes:
        valid: Container structure is usable
        reason: Why the container was rejected (set when valid is False)
        image_count: Number of image entries in the archive
        first_asset: Archive member to use as cover seed (first image / OPF cover)
        has_embedded_metadata: ComicInfo.xml present (CBZ/CBR) or OPF has title/author (EPUB)
        metadata: Parsed embedded fields, when readable
    """

    valid: bool
    reason: str | None = None
    image_count: int | None = None
    first_asset: str | None = None
    has_embedded_metadata: bool = False
    metadata: EmbeddedMetadata | None = None

    @classmethod
    def invalid(cls, reason: str) -> ValidationResult:
        return cls(valid=False, reason=reason)
