"""Tests for the source registry, quarantine service and enrichment orchestrator."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from inkshelf.broadcaster import EventBroadcaster
from inkshelf.enrichment import (
    CoverStore,
    EnrichmentOrchestrator,
    QuarantineService,
    SourceRegistry,
    build_failure_reason,
)
from inkshelf.enrichment.quarantine import NO_SOURCES_REASON
from inkshelf.exceptions import (
    InvalidTransitionError,
    RecordNotFoundError,
    SourceClientError,
    SourceRateLimitedError,
    SourceTimeoutError,
    ValidationError,
)
from inkshelf.models import (
    ContentCategory,
    ContentRecord,
    ContentStatus,
    EnrichmentAttempt,
    FileKind,
)
from inkshelf.storage import ContentRepository
from tests.conftest import FakeSource, FakeSubscriber, candidate


def create_record(
    repository: ContentRepository,
    file_kind: FileKind = FileKind.EPUB,
    **fields: Any,
) -> ContentRecord:
    data = {"title": "Dune", "author": "Frank Herbert", "has_embedded_metadata": True}
    data.update(fields)
    path = f"/library/{data['title']}.{file_kind.value}"
    return asyncio.run(repository.create(file_path=path, file_kind=file_kind, **data))


def connect(broadcaster: EventBroadcaster, subscriber: FakeSubscriber) -> None:
    asyncio.run(broadcaster.connect(subscriber, "admin-token"))


def make_orchestrator(
    repository: ContentRepository,
    broadcaster: EventBroadcaster,
    covers: CoverStore,
    *sources: FakeSource,
) -> EnrichmentOrchestrator:
    registry = SourceRegistry()
    for source in sources:
        registry.register(source)
    return EnrichmentOrchestrator(repository, registry, broadcaster, covers)


# =============================================================================
# Registry
# =============================================================================


class TestSourceRegistry:
    """Tests for SourceRegistry."""

    def test_priority_order(self) -> None:
        registry = SourceRegistry()
        registry.register(FakeSource("zeta", priority=20))
        registry.register(FakeSource("beta", priority=10))
        registry.register(FakeSource("alpha", priority=10))

        assert registry.names() == ["alpha", "beta", "zeta"]

    def test_for_category_skips_unconfigured(self) -> None:
        registry = SourceRegistry()
        registry.register(FakeSource("book"))
        registry.register(FakeSource("comic", category=ContentCategory.COMIC))
        registry.register(FakeSource("keyless", configured=False))

        assert [s.name for s in registry.for_category(ContentCategory.BOOK)] == ["book"]
        assert [s.name for s in registry.for_category(ContentCategory.COMIC)] == ["comic"]
        assert len(registry.available()) == 2
        assert len(registry) == 3

    def test_register_replaces_and_unregister(self) -> None:
        registry = SourceRegistry()
        registry.register(FakeSource("one", priority=1))
        registry.register(FakeSource("one", priority=5))

        assert len(registry) == 1
        source = registry.get("one")
        assert source is not None
        assert source.priority == 5
        assert registry.unregister("one")
        assert not registry.unregister("one")
        assert "one" not in registry


# =============================================================================
# Quarantine
# =============================================================================


class TestBuildFailureReason:
    """Tests for build_failure_reason()."""

    def test_no_attempts(self) -> None:
        assert build_failure_reason([]) == NO_SOURCES_REASON

    def test_all_timeouts(self) -> None:
        attempts = [
            EnrichmentAttempt("openlibrary", "OpenLibrary", "timeout"),
            EnrichmentAttempt("googlebooks", "Google Books", "timeout"),
        ]
        assert build_failure_reason(attempts) == (
            "API timeout on all sources (OpenLibrary, Google Books)"
        )

    def test_mixed_outcomes(self) -> None:
        attempts = [
            EnrichmentAttempt("anilist", "AniList", "no match"),
            EnrichmentAttempt("mangadex", "MangaDex", "rate-limited"),
            EnrichmentAttempt("myanimelist", "MyAnimeList", "error", "boom"),
        ]
        assert build_failure_reason(attempts) == (
            "AniList: no match. MangaDex: rate-limited. MyAnimeList: error (boom)"
        )


class TestQuarantineService:
    """Tests for QuarantineService."""

    def test_move_emits_failed_event(
        self,
        repository: ContentRepository,
        broadcaster: EventBroadcaster,
        subscriber: FakeSubscriber,
    ) -> None:
        record = create_record(repository)
        connect(broadcaster, subscriber)
        service = QuarantineService(repository, broadcaster)

        moved = asyncio.run(service.move_to_quarantine(record.id, "Nothing found", ["openlibrary"]))

        assert moved.status is ContentStatus.QUARANTINE
        assert moved.failure_reason == "Nothing found"
        [event] = subscriber.events()
        assert event["type"] == "enrichment.failed"
        assert event["payload"] == {
            "bookId": record.id,
            "failureReason": "Nothing found",
            "contentType": "book",
            "sourcesAttempted": ["openlibrary"],
        }

    def test_empty_reason_rejected(
        self, repository: ContentRepository, broadcaster: EventBroadcaster
    ) -> None:
        record = create_record(repository)
        service = QuarantineService(repository, broadcaster)

        with pytest.raises(ValidationError):
            asyncio.run(service.move_to_quarantine(record.id, "   "))
        assert asyncio.run(repository.require(record.id)).status is ContentStatus.PENDING

    def test_enriched_record_cannot_be_quarantined(
        self, repository: ContentRepository, broadcaster: EventBroadcaster
    ) -> None:
        record = create_record(repository)
        asyncio.run(repository.transition(record.id, ContentStatus.ENRICHED))
        service = QuarantineService(repository, broadcaster)

        with pytest.raises(InvalidTransitionError):
            asyncio.run(service.move_to_quarantine(record.id, "late failure"))

    def test_list_and_count(
        self, repository: ContentRepository, broadcaster: EventBroadcaster
    ) -> None:
        first = create_record(repository, title="One")
        second = create_record(repository, title="Two")
        create_record(repository, title="Three")
        service = QuarantineService(repository, broadcaster)

        async def run() -> tuple[list[ContentRecord], dict[str, int]]:
            await service.move_to_quarantine(first.id, "reason one")
            await service.move_to_quarantine(second.id, "reason two")
            return await service.list_quarantine(), await service.count_quarantine()

        records, count = asyncio.run(run())

        assert {r.id for r in records} == {first.id, second.id}
        assert count == {"count": 2}


# =============================================================================
# Automatic enrichment
# =============================================================================


class TestEnrich:
    """Tests for EnrichmentOrchestrator.enrich()."""

    def test_first_match_wins(
        self,
        repository: ContentRepository,
        broadcaster: EventBroadcaster,
        subscriber: FakeSubscriber,
        covers: CoverStore,
    ) -> None:
        record = create_record(repository, has_embedded_metadata=False, author=None)
        first = FakeSource("first", priority=1, results=[candidate(publisher="Ace")])
        second = FakeSource("second", priority=2, results=[candidate()])
        orchestrator = make_orchestrator(repository, broadcaster, covers, first, second)
        connect(broadcaster, subscriber)

        outcome = asyncio.run(orchestrator.enrich(record.id))

        assert outcome.enriched
        assert outcome.source == "first"
        assert outcome.record.author == "Frank Herbert"
        assert outcome.record.publisher == "Ace"
        assert outcome.record.enrichment_source == "first"
        assert second.queries == []
        assert subscriber.event_types() == [
            "enrichment.started",
            "enrichment.progress",
            "enrichment.progress",
            "enrichment.completed",
        ]
        steps = [e["payload"]["step"] for e in subscriber.events() if e["type"] == "enrichment.progress"]
        assert steps == ["first-search-started", "first-match-found"]
        completed = subscriber.events()[-1]["payload"]
        assert completed["source"] == "first"
        assert set(completed["fieldsUpdated"]) >= {"author", "publisher"}

    def test_falls_through_to_next_source(
        self,
        repository: ContentRepository,
        broadcaster: EventBroadcaster,
        subscriber: FakeSubscriber,
        covers: CoverStore,
    ) -> None:
        record = create_record(repository)
        first = FakeSource("first", priority=1, results=[])
        second = FakeSource("second", priority=2, results=[candidate(source="second")])
        orchestrator = make_orchestrator(repository, broadcaster, covers, first, second)
        connect(broadcaster, subscriber)

        outcome = asyncio.run(orchestrator.enrich(record.id))

        assert outcome.source == "second"
        assert [a.outcome for a in outcome.attempts] == ["no match", "matched"]
        steps = [e["payload"]["step"] for e in subscriber.events() if e["type"] == "enrichment.progress"]
        assert steps == [
            "first-search-started",
            "first-no-match",
            "second-search-started",
            "second-match-found",
        ]

    def test_fill_missing_keeps_embedded_fields(
        self, repository: ContentRepository, broadcaster: EventBroadcaster, covers: CoverStore
    ) -> None:
        record = create_record(repository, author="F. Herbert")
        source = FakeSource("first", results=[candidate(description="Spice.")])
        orchestrator = make_orchestrator(repository, broadcaster, covers, source)

        outcome = asyncio.run(orchestrator.enrich(record.id))

        assert outcome.record.author == "F. Herbert"
        assert outcome.record.description == "Spice."

    def test_isbn_hit_preferred(
        self, repository: ContentRepository, broadcaster: EventBroadcaster, covers: CoverStore
    ) -> None:
        record = create_record(repository, isbn="9780441013593", has_embedded_metadata=False)
        results = [
            candidate(external_id="close", title="Dune"),
            candidate(external_id="exact", title="Dune: Deluxe Edition", isbn="9780441013593"),
        ]
        orchestrator = make_orchestrator(
            repository, broadcaster, covers, FakeSource("first", results=results)
        )

        outcome = asyncio.run(orchestrator.enrich(record.id))

        assert outcome.record.title == "Dune: Deluxe Edition"

    def test_downloads_cover(
        self, repository: ContentRepository, broadcaster: EventBroadcaster, covers: CoverStore
    ) -> None:
        record = create_record(repository)
        source = FakeSource("first", results=[candidate(cover_url="https://covers.test/1.jpg")])
        orchestrator = make_orchestrator(repository, broadcaster, covers, source)

        outcome = asyncio.run(orchestrator.enrich(record.id))

        assert outcome.record.cover_path == f"covers/{record.id}.jpg"
        assert covers.absolute(outcome.record.cover_path).exists()

    def test_all_timeouts_quarantine(
        self,
        repository: ContentRepository,
        broadcaster: EventBroadcaster,
        subscriber: FakeSubscriber,
        covers: CoverStore,
    ) -> None:
        record = create_record(repository)
        orchestrator = make_orchestrator(
            repository,
            broadcaster,
            covers,
            FakeSource("first", priority=1, error=SourceTimeoutError("slow")),
            FakeSource("second", priority=2, error=SourceTimeoutError("slow")),
        )
        connect(broadcaster, subscriber)

        outcome = asyncio.run(orchestrator.enrich(record.id))

        assert outcome.status is ContentStatus.QUARANTINE
        assert outcome.failure_reason == "API timeout on all sources (First, Second)"
        failed = subscriber.events()[-1]
        assert failed["type"] == "enrichment.failed"
        assert failed["payload"]["sourcesAttempted"] == ["first", "second"]
        steps = [e["payload"]["step"] for e in subscriber.events() if e["type"] == "enrichment.progress"]
        assert "first-failed" in steps

    def test_mixed_failures_reason(
        self, repository: ContentRepository, broadcaster: EventBroadcaster, covers: CoverStore
    ) -> None:
        record = create_record(repository)
        orchestrator = make_orchestrator(
            repository,
            broadcaster,
            covers,
            FakeSource("first", priority=1, results=[candidate(title="Emma", author="Jane Austen")]),
            FakeSource("second", priority=2, error=SourceRateLimitedError("busy", status_code=429)),
            FakeSource("third", priority=3, error=SourceClientError("nope", status_code=404)),
        )

        outcome = asyncio.run(orchestrator.enrich(record.id))

        assert outcome.failure_reason == (
            "First: no match. Second: rate-limited. Third: client error (HTTP 404)"
        )
        stored = asyncio.run(repository.require(record.id))
        assert stored.status is ContentStatus.QUARANTINE
        assert stored.failure_reason == outcome.failure_reason

    def test_unexpected_error_is_attributed(
        self, repository: ContentRepository, broadcaster: EventBroadcaster, covers: CoverStore
    ) -> None:
        record = create_record(repository)
        orchestrator = make_orchestrator(
            repository, broadcaster, covers, FakeSource("first", error=RuntimeError("kaput"))
        )

        outcome = asyncio.run(orchestrator.enrich(record.id))

        assert outcome.failure_reason == "First: error (kaput)"

    def test_no_sources_for_category(
        self, repository: ContentRepository, broadcaster: EventBroadcaster, covers: CoverStore
    ) -> None:
        record = create_record(repository, file_kind=FileKind.CBZ, title="Berserk")
        book_only = FakeSource("books", results=[candidate(title="Berserk")])
        orchestrator = make_orchestrator(repository, broadcaster, covers, book_only)

        outcome = asyncio.run(orchestrator.enrich(record.id))

        assert outcome.failure_reason == NO_SOURCES_REASON
        assert book_only.queries == []

    def test_unknown_record(
        self, repository: ContentRepository, broadcaster: EventBroadcaster, covers: CoverStore
    ) -> None:
        orchestrator = make_orchestrator(repository, broadcaster, covers)
        with pytest.raises(RecordNotFoundError):
            asyncio.run(orchestrator.enrich(404))

    def test_quarantined_record_is_not_re_enriched(
        self, repository: ContentRepository, broadcaster: EventBroadcaster, covers: CoverStore
    ) -> None:
        """Leaving quarantine takes an explicit apply()."""
        record = create_record(repository)
        asyncio.run(
            make_orchestrator(repository, broadcaster, covers, FakeSource("first")).enrich(
                record.id
            )
        )
        matching = FakeSource("second", results=[candidate()])
        orchestrator = make_orchestrator(repository, broadcaster, covers, matching)

        with pytest.raises(InvalidTransitionError):
            asyncio.run(orchestrator.enrich(record.id))

        stored = asyncio.run(repository.require(record.id))
        assert stored.status is ContentStatus.QUARANTINE
        assert matching.queries == []

    def test_enriched_record_is_left_alone(
        self, repository: ContentRepository, broadcaster: EventBroadcaster, covers: CoverStore
    ) -> None:
        record = create_record(repository)
        asyncio.run(
            make_orchestrator(
                repository, broadcaster, covers, FakeSource("first", results=[candidate()])
            ).enrich(record.id)
        )
        failing = make_orchestrator(
            repository, broadcaster, covers, FakeSource("second", error=SourceTimeoutError("slow"))
        )

        with pytest.raises(InvalidTransitionError):
            asyncio.run(failing.enrich(record.id))

        assert asyncio.run(repository.require(record.id)).status is ContentStatus.ENRICHED

    def test_comic_query_uses_cleaned_title(
        self, repository: ContentRepository, broadcaster: EventBroadcaster, covers: CoverStore
    ) -> None:
        record = create_record(
            repository, file_kind=FileKind.CBZ, title="Berserk Vol 03 [Digital]", author=None
        )
        source = FakeSource(
            "comics", category=ContentCategory.COMIC, results=[candidate(title="Berserk")]
        )
        orchestrator = make_orchestrator(repository, broadcaster, covers, source)

        outcome = asyncio.run(orchestrator.enrich(record.id))

        assert [q.title for q in source.queries] == ["Berserk"]
        assert outcome.enriched

    def test_book_query_keeps_title(
        self, repository: ContentRepository, broadcaster: EventBroadcaster, covers: CoverStore
    ) -> None:
        record = create_record(repository, title="Dune (Deluxe)")
        source = FakeSource("first", results=[])
        orchestrator = make_orchestrator(repository, broadcaster, covers, source)

        asyncio.run(orchestrator.enrich(record.id))

        assert [q.title for q in source.queries] == ["Dune (Deluxe)"]


# =============================================================================
# Manual apply
# =============================================================================


class TestApply:
    """Tests for EnrichmentOrchestrator.apply()."""

    def quarantined(self, repository: ContentRepository) -> ContentRecord:
        record = create_record(repository, author="F. Herbert")
        return asyncio.run(
            repository.transition(record.id, ContentStatus.QUARANTINE, failure_reason="no match")
        )

    def test_apply_releases_quarantine(
        self,
        repository: ContentRepository,
        broadcaster: EventBroadcaster,
        subscriber: FakeSubscriber,
        covers: CoverStore,
    ) -> None:
        record = self.quarantined(repository)
        orchestrator = make_orchestrator(repository, broadcaster, covers)
        connect(broadcaster, subscriber)

        result = asyncio.run(
            orchestrator.apply(record.id, candidate(description="Spice.", genres=["SF"]))
        )

        assert result.record is not None
        assert result.record.status is ContentStatus.ENRICHED
        assert result.record.failure_reason is None
        assert result.record.enrichment_source == "manual"
        assert result.record.author == "Frank Herbert"
        assert set(result.fields_updated) == {"author", "description", "genres"}
        assert not result.cover_downloaded
        assert subscriber.event_types() == ["enrichment.completed", "content.updated"]
        assert subscriber.events()[0]["payload"]["source"] == "manual"

    def test_apply_is_idempotent(
        self, repository: ContentRepository, broadcaster: EventBroadcaster, covers: CoverStore
    ) -> None:
        record = self.quarantined(repository)
        orchestrator = make_orchestrator(repository, broadcaster, covers)
        match = candidate(description="Spice.", cover_url="https://covers.test/dune.jpg")

        async def run() -> tuple[list[str], list[str], ContentRecord | None]:
            first = await orchestrator.apply(record.id, match)
            second = await orchestrator.apply(record.id, match)
            return first.fields_updated, second.fields_updated, second.record

        first_fields, second_fields, final = asyncio.run(run())

        assert "cover_path" in first_fields
        assert second_fields == []
        assert final is not None
        assert final.cover_path == f"covers/{record.id}.jpg"

    def test_apply_accepts_mapping(
        self, repository: ContentRepository, broadcaster: EventBroadcaster, covers: CoverStore
    ) -> None:
        record = create_record(repository)
        orchestrator = make_orchestrator(repository, broadcaster, covers)
        payload = {"source": "openlibrary", "external_id": "/works/OL1W", "title": "Dune", "publisher": "Ace"}

        result = asyncio.run(orchestrator.apply(record.id, payload))

        assert result.fields_updated == ["publisher"]

    def test_apply_unknown_record(
        self, repository: ContentRepository, broadcaster: EventBroadcaster, covers: CoverStore
    ) -> None:
        orchestrator = make_orchestrator(repository, broadcaster, covers)
        with pytest.raises(RecordNotFoundError):
            asyncio.run(orchestrator.apply(999, candidate()))


def test_cover_store_low_quality(tmp_path: Path, covers: CoverStore) -> None:
    assert covers.is_low_quality(None)
    assert covers.is_low_quality("covers/missing.jpg")
    rel = asyncio.run(covers.save_bytes(7, b"x" * 60_000, "JPG"))
    assert rel == "covers/7.jpg"
    assert not covers.is_low_quality(rel)
