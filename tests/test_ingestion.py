"""Tests for the ingestion orchestrator."""

from __future__ import annotations

import asyncio
import re
from datetime import UTC, datetime
from pathlib import Path

import pytest

from inkshelf.broadcaster import EventBroadcaster
from inkshelf.enrichment import CoverStore, EnrichmentOrchestrator, SourceRegistry
from inkshelf.ingestion import ALREADY_EXISTS_REASON, IngestionOrchestrator
from inkshelf.models import (
    ContentCategory,
    ContentStatus,
    DetectionEvent,
    ProcessAction,
    ProcessResult,
)
from inkshelf.storage import ContentRepository
from tests.conftest import FakeSource, FakeSubscriber, candidate, make_cbz, make_comic_info, make_epub


@pytest.fixture
def inbox(tmp_path: Path) -> Path:
    path = tmp_path / "inbox"
    path.mkdir()
    return path


@pytest.fixture
def ingestion(
    repository: ContentRepository, broadcaster: EventBroadcaster, covers: CoverStore
) -> IngestionOrchestrator:
    return IngestionOrchestrator(repository, broadcaster, covers)


def enriching(
    repository: ContentRepository,
    broadcaster: EventBroadcaster,
    covers: CoverStore,
    *,
    background: bool,
) -> IngestionOrchestrator:
    registry = SourceRegistry()
    registry.register(FakeSource("books", results=[candidate(publisher="Ace")]))
    enricher = EnrichmentOrchestrator(repository, registry, broadcaster, covers)
    return IngestionOrchestrator(
        repository, broadcaster, covers, enricher, enrich_in_background=background
    )


class TestProcess:
    """Tests for IngestionOrchestrator.process()."""

    def test_creates_pending_epub_record(
        self,
        inbox: Path,
        ingestion: IngestionOrchestrator,
        broadcaster: EventBroadcaster,
        subscriber: FakeSubscriber,
        covers: CoverStore,
    ) -> None:
        path = make_epub(inbox / "dune.epub")
        detected_at = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)

        async def run() -> ProcessResult:
            await broadcaster.connect(subscriber, "admin-token")
            return await ingestion.process(DetectionEvent.for_path(path, detected_at))

        result = asyncio.run(run())

        assert result.action is ProcessAction.CREATED
        record = result.record
        assert record is not None
        assert record.status is ContentStatus.PENDING
        assert record.category is ContentCategory.BOOK
        assert record.title == "Dune"
        assert record.author == "Frank Herbert"
        assert record.has_embedded_metadata
        assert record.file_path == str(path.resolve())
        assert record.cover_path == f"covers/{record.id}.jpg"
        assert covers.absolute(record.cover_path).exists()

        [event] = subscriber.events()
        assert event["type"] == "file.detected"
        assert event["payload"] == {
            "filename": "dune.epub",
            "contentType": "book",
            "bookId": record.id,
            "timestamp": "2026-03-01T12:00:00.000Z",
        }

    def test_filename_title_without_metadata(
        self, inbox: Path, ingestion: IngestionOrchestrator
    ) -> None:
        path = make_cbz(inbox / "berserk_vol-1.cbz")

        result = asyncio.run(ingestion.process(DetectionEvent.for_path(path)))

        assert result.record is not None
        assert result.record.title == "Berserk Vol 1"
        assert result.record.category is ContentCategory.COMIC
        assert not result.record.has_embedded_metadata

    def test_comic_info_seeds_fields(self, inbox: Path, ingestion: IngestionOrchestrator) -> None:
        info = make_comic_info(Title="Berserk", Writer="Kentarou Miura", Series="Berserk", Number="3")
        path = make_cbz(inbox / "b3.cbz", comic_info=info)

        result = asyncio.run(ingestion.process(DetectionEvent.for_path(path)))

        record = result.record
        assert record is not None
        assert record.has_embedded_metadata
        assert (record.title, record.author, record.series, record.volume) == (
            "Berserk",
            "Kentarou Miura",
            "Berserk",
            3,
        )

    def test_duplicate_path_skipped(
        self,
        inbox: Path,
        ingestion: IngestionOrchestrator,
        broadcaster: EventBroadcaster,
        subscriber: FakeSubscriber,
    ) -> None:
        path = make_epub(inbox / "dune.epub")

        async def run() -> tuple[ProcessResult, ProcessResult]:
            await broadcaster.connect(subscriber, "admin-token")
            first = await ingestion.process(DetectionEvent.for_path(path))
            second = await ingestion.process(DetectionEvent.for_path(path))
            return first, second

        first, second = asyncio.run(run())

        assert second.action is ProcessAction.SKIPPED
        assert second.reason == ALREADY_EXISTS_REASON
        assert second.record is not None
        assert first.record is not None
        assert second.record.id == first.record.id
        assert subscriber.event_types() == ["file.detected"]

    def test_concurrent_events_create_once(
        self, inbox: Path, ingestion: IngestionOrchestrator
    ) -> None:
        path = make_cbz(inbox / "vol1.cbz")

        async def run() -> list[ProcessResult]:
            return await asyncio.gather(
                ingestion.process(DetectionEvent.for_path(path)),
                ingestion.process(DetectionEvent.for_path(path)),
            )

        results = asyncio.run(run())

        assert sorted(r.action.value for r in results) == ["created", "skipped"]

    def test_invalid_file_dropped(
        self,
        inbox: Path,
        ingestion: IngestionOrchestrator,
        repository: ContentRepository,
        broadcaster: EventBroadcaster,
        subscriber: FakeSubscriber,
    ) -> None:
        path = make_epub(inbox / "broken.epub", mimetype="text/plain")

        async def run() -> ProcessResult:
            await broadcaster.connect(subscriber, "admin-token")
            return await ingestion.process(DetectionEvent.for_path(path))

        result = asyncio.run(run())

        assert result.action is ProcessAction.FAILED
        assert not result.success
        assert "Invalid mimetype" in (result.reason or "")
        assert asyncio.run(repository.get_by_path(str(path.resolve()))) is None
        assert subscriber.messages == []

    def test_unsupported_extension(self, inbox: Path, ingestion: IngestionOrchestrator) -> None:
        path = inbox / "notes.pdf"
        path.write_bytes(b"%PDF-1.7")

        result = asyncio.run(ingestion.process(DetectionEvent.for_path(path)))

        assert result.action is ProcessAction.FAILED
        assert result.reason == "Unsupported file type: .pdf"


class TestEnrichmentHandoff:
    """Ingestion hands new records to enrichment."""

    def test_inline_enrichment(
        self,
        inbox: Path,
        repository: ContentRepository,
        broadcaster: EventBroadcaster,
        subscriber: FakeSubscriber,
        covers: CoverStore,
    ) -> None:
        ingestion = enriching(repository, broadcaster, covers, background=False)
        path = make_epub(inbox / "dune.epub")

        async def run() -> ProcessResult:
            await broadcaster.connect(subscriber, "admin-token")
            return await ingestion.process(DetectionEvent.for_path(path))

        result = asyncio.run(run())

        assert result.record is not None
        stored = asyncio.run(repository.require(result.record.id))
        assert stored.status is ContentStatus.ENRICHED
        assert stored.publisher == "Ace"
        types = subscriber.event_types()
        assert types[0] == "file.detected"
        assert types[-1] == "enrichment.completed"

    def test_background_enrichment_drains(
        self,
        inbox: Path,
        repository: ContentRepository,
        broadcaster: EventBroadcaster,
        covers: CoverStore,
    ) -> None:
        ingestion = enriching(repository, broadcaster, covers, background=True)
        path = make_epub(inbox / "dune.epub")

        async def run() -> ProcessResult:
            result = await ingestion.process(DetectionEvent.for_path(path))
            await ingestion.drain(timeout=5)
            return result

        result = asyncio.run(run())

        assert ingestion.pending_enrichments == 0
        assert result.record is not None
        assert asyncio.run(repository.require(result.record.id)).status is ContentStatus.ENRICHED

    def test_enrichment_crash_keeps_record(
        self,
        inbox: Path,
        repository: ContentRepository,
        broadcaster: EventBroadcaster,
        covers: CoverStore,
    ) -> None:
        class ExplodingEnricher:
            async def enrich(self, record_id: int) -> None:
                raise RuntimeError("enricher down")

        ingestion = IngestionOrchestrator(
            repository,
            broadcaster,
            covers,
            ExplodingEnricher(),  # type: ignore[arg-type]
            enrich_in_background=False,
        )
        path = make_cbz(inbox / "vol1.cbz")

        result = asyncio.run(ingestion.process(DetectionEvent.for_path(path)))

        assert result.action is ProcessAction.CREATED
        assert result.record is not None
        assert asyncio.run(repository.require(result.record.id)).status is ContentStatus.PENDING


def test_timestamp_format_of_local_detection(
    inbox: Path,
    ingestion: IngestionOrchestrator,
    broadcaster: EventBroadcaster,
    subscriber: FakeSubscriber,
) -> None:
    path = make_cbz(inbox / "vol2.cbz")

    async def run() -> None:
        await broadcaster.connect(subscriber, "admin-token")
        await ingestion.process(DetectionEvent.for_path(path))

    asyncio.run(run())
    stamp = subscriber.events()[0]["payload"]["timestamp"]
    assert re.match(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$", stamp)
