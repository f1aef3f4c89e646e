"""Tests for the force scan."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from inkshelf.broadcaster import EventBroadcaster
from inkshelf.enrichment import CoverStore
from inkshelf.exceptions import ScanInProgressError
from inkshelf.ingestion import IngestionOrchestrator
from inkshelf.models import DetectionEvent, ProcessAction, ProcessResult, ScanResult
from inkshelf.scan import ScanService, find_supported_files
from inkshelf.storage import ContentRepository
from inkshelf.watcher import WatcherConfig
from tests.conftest import FakeSubscriber, make_cbz, make_epub


@pytest.fixture
def library(tmp_path: Path) -> Path:
    root = tmp_path / "library"
    (root / "comics" / "berserk").mkdir(parents=True)
    (root / ".trash").mkdir()
    make_epub(root / "dune.epub")
    make_cbz(root / "comics" / "berserk" / "vol1.cbz")
    (root / "comics" / "broken.cbz").write_bytes(b"not a zip")
    (root / "notes.txt").write_text("ignored")
    make_epub(root / ".trash" / "deleted.epub")
    return root


@pytest.fixture
def scan_service(
    library: Path,
    repository: ContentRepository,
    broadcaster: EventBroadcaster,
    covers: CoverStore,
) -> ScanService:
    ingestion = IngestionOrchestrator(repository, broadcaster, covers)
    config = WatcherConfig(watch_dir=library, stability_threshold=0.5)
    return ScanService(config, ingestion, repository, broadcaster)


class TestFindSupportedFiles:
    def test_recursive_and_filtered(self, library: Path) -> None:
        files = find_supported_files(WatcherConfig(watch_dir=library, stability_threshold=0.5))
        relative = [p.relative_to(library.resolve()).as_posix() for p in files]

        assert relative == ["dune.epub", "comics/broken.cbz", "comics/berserk/vol1.cbz"]

    def test_missing_root(self, tmp_path: Path) -> None:
        config = WatcherConfig(watch_dir=tmp_path / "nope", stability_threshold=0.5)
        assert find_supported_files(config) == []

    def test_unconfigured_root(self) -> None:
        assert find_supported_files(WatcherConfig(watch_dir=None, stability_threshold=0.5)) == []


class TestTriggerForceScan:
    """Tests for ScanService.trigger_force_scan()."""

    def test_counts_and_event(
        self,
        scan_service: ScanService,
        broadcaster: EventBroadcaster,
        subscriber: FakeSubscriber,
    ) -> None:
        async def run() -> ScanResult:
            await broadcaster.connect(subscriber, "admin-token")
            return await scan_service.trigger_force_scan()

        result = asyncio.run(run())

        assert result.files_found == 3
        assert result.files_processed == 2
        assert result.files_skipped == 0
        assert result.errors == 1
        assert result.duration_ms >= 0

        completed = subscriber.events()[-1]
        assert completed["type"] == "scan.completed"
        assert completed["payload"] == result.to_payload()
        assert set(completed["payload"]) == {
            "filesFound",
            "filesProcessed",
            "filesSkipped",
            "errors",
            "duration",
        }
        assert subscriber.event_types().count("file.detected") == 2

    def test_rescan_skips_known_files(self, scan_service: ScanService) -> None:
        async def run() -> ScanResult:
            await scan_service.trigger_force_scan()
            return await scan_service.trigger_force_scan()

        second = asyncio.run(run())

        assert second.files_found == 3
        assert second.files_processed == 0
        assert second.files_skipped == 2
        assert second.errors == 1

    def test_concurrent_scan_rejected(
        self, scan_service: ScanService, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        async def run() -> ScanResult:
            started = asyncio.Event()
            release = asyncio.Event()

            async def slow_process(event: DetectionEvent) -> ProcessResult:
                started.set()
                await release.wait()
                return ProcessResult(ProcessAction.CREATED)

            monkeypatch.setattr(scan_service.ingestion, "process", slow_process)

            first = asyncio.create_task(scan_service.trigger_force_scan())
            await started.wait()
            assert scan_service.is_scan_running()
            with pytest.raises(ScanInProgressError, match="Scan already in progress"):
                await scan_service.trigger_force_scan()
            release.set()
            return await first

        result = asyncio.run(run())

        assert result.files_processed == 3
        assert not scan_service.is_scan_running()

    def test_processing_exception_counts_as_error(
        self, scan_service: ScanService, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        async def explode(event: DetectionEvent) -> ProcessResult:
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(scan_service.ingestion, "process", explode)

        result = asyncio.run(scan_service.trigger_force_scan())

        assert result.errors == 3
        assert result.files_processed == 0
        assert not scan_service.is_scan_running()

    def test_skip_from_ingestion_counts_as_skipped(
        self, scan_service: ScanService, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        async def skip(event: DetectionEvent) -> ProcessResult:
            return ProcessResult(ProcessAction.SKIPPED, "File already exists in database")

        monkeypatch.setattr(scan_service.ingestion, "process", skip)

        result = asyncio.run(scan_service.trigger_force_scan())

        assert result.files_skipped == 3
        assert result.errors == 0

    def test_empty_watch_root(
        self,
        tmp_path: Path,
        repository: ContentRepository,
        broadcaster: EventBroadcaster,
        covers: CoverStore,
    ) -> None:
        empty = tmp_path / "empty"
        empty.mkdir()
        service = ScanService(
            WatcherConfig(watch_dir=empty, stability_threshold=0.5),
            IngestionOrchestrator(repository, broadcaster, covers),
            repository,
            broadcaster,
        )

        result = asyncio.run(service.trigger_force_scan())

        assert result.to_payload()["filesFound"] == 0
