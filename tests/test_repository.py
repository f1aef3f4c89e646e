"""Tests for the content record repository."""

from __future__ import annotations

import asyncio

import pytest

from inkshelf.exceptions import (
    DuplicateRecordError,
    InvalidTransitionError,
    RecordNotFoundError,
    ValidationError,
)
from inkshelf.models import ContentCategory, ContentStatus, FileKind, Visibility
from inkshelf.storage import ContentRepository


def create(repository: ContentRepository, path: str = "/library/dune.epub", **fields):  # type: ignore[no-untyped-def]
    kind = FileKind.from_extension(path.rsplit(".", 1)[-1]) or FileKind.EPUB
    return asyncio.run(
        repository.create(file_path=path, file_kind=kind, title=fields.pop("title", "Dune"), **fields)
    )


class TestCreate:
    """Tests for record creation and path uniqueness."""

    def test_create_defaults(self, repository: ContentRepository) -> None:
        record = create(repository)

        assert record.id > 0
        assert record.status is ContentStatus.PENDING
        assert record.visibility is Visibility.PUBLIC
        assert record.category is ContentCategory.BOOK
        assert record.genres == []
        assert record.created_at is not None

    def test_category_follows_file_kind(self, repository: ContentRepository) -> None:
        record = create(repository, "/library/berserk.cbz", title="Berserk")
        assert record.file_kind is FileKind.CBZ
        assert record.category is ContentCategory.COMIC

    def test_duplicate_path_rejected(self, repository: ContentRepository) -> None:
        create(repository)
        with pytest.raises(DuplicateRecordError):
            create(repository)

    def test_seed_fields(self, repository: ContentRepository) -> None:
        record = create(repository, author="Frank Herbert", genres=["SF"], has_embedded_metadata=True)

        assert record.author == "Frank Herbert"
        assert record.genres == ["SF"]
        assert record.has_embedded_metadata

    def test_unknown_field_rejected(self, repository: ContentRepository) -> None:
        with pytest.raises(ValidationError):
            create(repository, status="enriched")


class TestReads:
    """Tests for lookups and status queries."""

    def test_get_by_path(self, repository: ContentRepository) -> None:
        record = create(repository)
        found = asyncio.run(repository.get_by_path("/library/dune.epub"))
        assert found is not None
        assert found.id == record.id
        assert asyncio.run(repository.get_by_path("/library/other.epub")) is None

    def test_require_unknown(self, repository: ContentRepository) -> None:
        with pytest.raises(RecordNotFoundError):
            asyncio.run(repository.require(999))

    def test_existing_paths(self, repository: ContentRepository) -> None:
        create(repository, "/library/a.epub")
        create(repository, "/library/b.epub")

        existing = asyncio.run(
            repository.existing_paths(["/library/a.epub", "/library/c.epub", "/library/b.epub"])
        )

        assert existing == {"/library/a.epub", "/library/b.epub"}

    def test_list_and_count_by_status(self, repository: ContentRepository) -> None:
        first = create(repository, "/library/a.epub")
        second = create(repository, "/library/b.epub")
        for record in (first, second):
            asyncio.run(
                repository.transition(record.id, ContentStatus.QUARANTINE, failure_reason="no match")
            )

        listed = asyncio.run(repository.list_by_status(ContentStatus.QUARANTINE))

        assert [r.id for r in listed] == [second.id, first.id]  # newest first
        assert asyncio.run(repository.count_by_status(ContentStatus.QUARANTINE)) == 2
        assert asyncio.run(repository.count_by_status(ContentStatus.PENDING)) == 0


class TestTransitions:
    """Tests for lifecycle transitions."""

    def test_pending_to_enriched(self, repository: ContentRepository) -> None:
        record = create(repository)

        updated = asyncio.run(
            repository.transition(
                record.id,
                ContentStatus.ENRICHED,
                enrichment_source="openlibrary",
                fields={"author": "Frank Herbert"},
            )
        )

        assert updated.status is ContentStatus.ENRICHED
        assert updated.enrichment_source == "openlibrary"
        assert updated.author == "Frank Herbert"
        assert updated.failure_reason is None

    def test_quarantine_requires_reason(self, repository: ContentRepository) -> None:
        record = create(repository)
        with pytest.raises(ValidationError):
            asyncio.run(repository.transition(record.id, ContentStatus.QUARANTINE, failure_reason=" "))
        assert asyncio.run(repository.require(record.id)).status is ContentStatus.PENDING

    def test_quarantine_to_enriched_clears_reason(self, repository: ContentRepository) -> None:
        record = create(repository)
        asyncio.run(repository.transition(record.id, ContentStatus.QUARANTINE, failure_reason="x"))

        updated = asyncio.run(repository.transition(record.id, ContentStatus.ENRICHED))

        assert updated.status is ContentStatus.ENRICHED
        assert updated.failure_reason is None

    def test_enriched_cannot_be_quarantined(self, repository: ContentRepository) -> None:
        record = create(repository)
        asyncio.run(repository.transition(record.id, ContentStatus.ENRICHED))

        with pytest.raises(InvalidTransitionError):
            asyncio.run(
                repository.transition(record.id, ContentStatus.QUARANTINE, failure_reason="late")
            )

    def test_nothing_returns_to_pending(self, repository: ContentRepository) -> None:
        record = create(repository)
        with pytest.raises(InvalidTransitionError):
            asyncio.run(repository.transition(record.id, ContentStatus.PENDING))

    def test_set_visibility(self, repository: ContentRepository) -> None:
        record = create(repository)

        updated = asyncio.run(repository.set_visibility(record.id, Visibility.PRIVATE))

        assert updated.visibility is Visibility.PRIVATE
        assert updated.status is ContentStatus.PENDING
