"""Data models for inkshelf."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

UNKNOWN_AUTHOR = "Unknown"


class ContentStatus(str, Enum):
    """Lifecycle state of a content record."""

    PENDING = "pending"  # Just ingested, enrichment not finished
    ENRICHED = "enriched"  # Metadata applied
    QUARANTINE = "quarantine"  # Enrichment failed, waiting for an operator


class Visibility(str, Enum):
    """Controls non-admin read access."""

    PUBLIC = "public"
    PRIVATE = "private"


class Role(str, Enum):
    """Role of an authenticated principal."""

    ADMIN = "admin"
    USER = "user"


class ContentCategory(str, Enum):
    """Book vs sequential-art content. Source sets are disjoint per category."""

    BOOK = "book"
    COMIC = "comic"


class FileKind(str, Enum):
    """Supported container formats."""

    EPUB = "epub"
    CBZ = "cbz"
    CBR = "cbr"

    @property
    def category(self) -> ContentCategory:
        return ContentCategory.BOOK if self is FileKind.EPUB else ContentCategory.COMIC

    @classmethod
    def from_extension(cls, extension: str) -> FileKind | None:
        """Map ".epub"/"EPUB"/"epub" to a FileKind, or None if unsupported."""
        try:
            return cls(extension.lower().lstrip("."))
        except ValueError:
            return None


SUPPORTED_EXTENSIONS: frozenset[str] = frozenset(f".{kind.value}" for kind in FileKind)

# Allowed lifecycle moves. enriched -> enriched covers re-applying a candidate.
ALLOWED_TRANSITIONS: dict[ContentStatus, frozenset[ContentStatus]] = {
    ContentStatus.PENDING: frozenset({ContentStatus.ENRICHED, ContentStatus.QUARANTINE}),
    ContentStatus.QUARANTINE: frozenset({ContentStatus.ENRICHED}),
    ContentStatus.ENRICHED: frozenset({ContentStatus.ENRICHED}),
}


def title_from_filename(filename: str) -> str:
    """Derive a readable title from a file name.

    Example:
        >>> title_from_filename("the_hobbit-illustrated.epub")
        'The Hobbit Illustrated'
    """
    stem = Path(filename).stem
    cleaned = re.sub(r"\s+", " ", re.sub(r"[_-]", " ", stem)).strip()
    if not cleaned:
        return stem or filename
    return " ".join(word[:1].upper() + word[1:] for word in cleaned.split(" "))


# =============================================================================
# Pipeline Events & Results
# =============================================================================


@dataclass(frozen=True)
class DetectionEvent:
    """A new, write-stable file in the watched directory."""

    file_path: Path
    filename: str
    extension: str  # Lower-case, with leading dot
    detected_at: datetime

    @classmethod
    def for_path(cls, path: Path, detected_at: datetime | None = None) -> DetectionEvent:
        return cls(
            file_path=path,
            filename=path.name,
            extension=path.suffix.lower(),
            detected_at=detected_at or datetime.now().astimezone(),
        )


@dataclass
class ContentRecord:
    """One physical file and its bibliographic state."""

    id: int
    file_path: str
    file_kind: FileKind
    category: ContentCategory
    title: str
    status: ContentStatus = ContentStatus.PENDING
    visibility: Visibility = Visibility.PUBLIC
    author: str | None = None
    description: str | None = None
    genres: list[str] = field(default_factory=list)
    series: str | None = None
    volume: int | None = None
    isbn: str | None = None
    publisher: str | None = None
    language: str | None = None
    publication_date: str | None = None
    cover_path: str | None = None
    has_embedded_metadata: bool = False
    failure_reason: str | None = None
    enrichment_source: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def filename(self) -> str:
        return Path(self.file_path).name

    def to_dict(self) -> dict[str, Any]:
        """Serialize for event payloads and CLI JSON output."""
        return {
            "id": self.id,
            "filePath": self.file_path,
            "fileType": self.file_kind.value,
            "contentType": self.category.value,
            "title": self.title,
            "author": self.author,
            "description": self.description,
            "genres": list(self.genres),
            "series": self.series,
            "volume": self.volume,
            "isbn": self.isbn,
            "publisher": self.publisher,
            "language": self.language,
            "publicationDate": self.publication_date,
            "coverPath": self.cover_path,
            "hasEmbeddedMetadata": self.has_embedded_metadata,
            "status": self.status.value,
            "visibility": self.visibility.value,
            "failureReason": self.failure_reason,
            "enrichmentSource": self.enrichment_source,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class ProcessAction(str, Enum):
    """Outcome of ingesting one detection event."""

    CREATED = "created"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ProcessResult:
    """Result of IngestionOrchestrator.process()."""

    action: ProcessAction
    reason: str | None = None
    record: ContentRecord | None = None

    @property
    def success(self) -> bool:
        return self.action is not ProcessAction.FAILED


@dataclass
class ScanResult:
    """Counters reported by a completed force scan."""

    files_found: int = 0
    files_processed: int = 0
    files_skipped: int = 0
    errors: int = 0
    duration_ms: int = 0

    def to_payload(self) -> dict[str, int]:
        return {
            "filesFound": self.files_found,
            "filesProcessed": self.files_processed,
            "filesSkipped": self.files_skipped,
            "errors": self.errors,
            "duration": self.duration_ms,
        }


@dataclass
class ApplyResult:
    """Result of applying a metadata candidate to a record."""

    record_id: int
    fields_updated: list[str]
    cover_downloaded: bool
    record: ContentRecord | None = None


# =============================================================================
# Metadata Candidates
# =============================================================================


class MetadataCandidate(BaseModel):
    """A normalized search result from one metadata source.

    Never persisted directly; only its fields are copied onto a ContentRecord.
    """

    model_config = {"extra": "ignore"}

    source: str
    external_id: str
    title: str = Field(min_length=1)
    author: str | None = None
    description: str | None = None
    cover_url: str | None = None
    genres: list[str] = Field(default_factory=list)
    publication_date: str | None = None
    publisher: str | None = None
    isbn: str | None = None
    language: str | None = None
    series: str | None = None
    volume: int | None = None
    # Extra titles used for matching only (romaji, native, synonyms); never applied
    alternative_titles: list[str] = Field(default_factory=list)

    @field_validator("genres", mode="before")
    @classmethod
    def _coerce_genres(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [g.strip() for g in v.split(",") if g.strip()]
        return v


@dataclass
class EnrichmentAttempt:
    """One source tried during automatic enrichment."""

    source: str
    label: str
    outcome: str  # "matched", "no match", "timeout", "rate-limited", ...
    detail: str | None = None

    @property
    def matched(self) -> bool:
        return self.outcome == "matched"

    def describe(self) -> str:
        """Render as "<Label>: <outcome>" for quarantine reasons."""
        if self.detail:
            return f"{self.label}: {self.outcome} ({self.detail})"
        return f"{self.label}: {self.outcome}"


@dataclass
class EnrichmentOutcome:
    """Final result of EnrichmentOrchestrator.enrich()."""

    record: ContentRecord
    attempts: list[EnrichmentAttempt] = field(default_factory=list)
    source: str | None = None
    failure_reason: str | None = None

    @property
    def status(self) -> ContentStatus:
        return self.record.status

    @property
    def enriched(self) -> bool:
        return self.record.status is ContentStatus.ENRICHED


@dataclass(frozen=True)
class Principal:
    """Authenticated caller resolved by the session layer."""

    id: int | str
    username: str
    role: Role = Role.USER

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN
