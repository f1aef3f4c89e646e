"""Force scan: ingest every supported file under the watch root.

Only one scan runs at a time; a second request fails fast with
ScanInProgressError instead of queueing. The watcher keeps running while a
scan is in progress; the path dedup in ingestion keeps them from
double-creating records.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from pathlib import Path

from inkshelf.broadcaster import EventBroadcaster, EventType
from inkshelf.exceptions import ScanInProgressError
from inkshelf.ingestion import IngestionOrchestrator
from inkshelf.models import DetectionEvent, ProcessAction, ScanResult
from inkshelf.storage import ContentRepository
from inkshelf.watcher import WatcherConfig

logger = logging.getLogger(__name__)


def find_supported_files(config: WatcherConfig) -> list[Path]:
    """Recursively list files under the watch root that the watcher would accept.

    Hidden directories are not descended into. Unreadable directories are
    logged and skipped.
    """
    if config.watch_dir is None:
        logger.warning("Watch directory is not configured, nothing to scan")
        return []
    root = config.watch_dir.resolve()
    if not root.is_dir():
        logger.error("Watch directory does not exist: %s", root)
        return []

    def on_error(err: OSError) -> None:
        logger.error("Error scanning directory %s: %s", err.filename, err)

    found: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        for name in sorted(filenames):
            path = Path(dirpath) / name
            if not config.should_ignore(path, root):
                found.append(path)
    return found


class ScanService:
    """Mutually exclusive full-directory scan feeding the ingestion orchestrator."""

    def __init__(
        self,
        config: WatcherConfig,
        ingestion: IngestionOrchestrator,
        repository: ContentRepository,
        broadcaster: EventBroadcaster,
    ) -> None:
        self.config = config
        self.ingestion = ingestion
        self.repository = repository
        self.broadcaster = broadcaster
        self._running = False

    def is_scan_running(self) -> bool:
        return self._running

    async def trigger_force_scan(self) -> ScanResult:
        """Scan the watch root and ingest files that have no record yet.

        Raises:
            ScanInProgressError: Another scan is running
        """
        if self._running:
            raise ScanInProgressError()
        self._running = True
        started = time.monotonic()
        result = ScanResult()
        try:
            logger.info("Starting force scan of %s", self.config.watch_dir)
            files = await asyncio.to_thread(find_supported_files, self.config)
            result.files_found = len(files)

            existing = await self.repository.existing_paths(str(p) for p in files)
            new_files = [p for p in files if str(p) not in existing]
            result.files_skipped = len(files) - len(new_files)
            logger.info("Force scan found %d file(s), %d new", len(files), len(new_files))

            for path in new_files:
                await self._ingest(path, result)

            result.duration_ms = int((time.monotonic() - started) * 1000)
            logger.info(
                "Force scan completed: %d found, %d processed, %d skipped, %d errors in %dms",
                result.files_found,
                result.files_processed,
                result.files_skipped,
                result.errors,
                result.duration_ms,
            )
            await self.broadcaster.broadcast(EventType.SCAN_COMPLETED, result.to_payload())
            return result
        finally:
            self._running = False

    async def _ingest(self, path: Path, result: ScanResult) -> None:
        try:
            outcome = await self.ingestion.process(DetectionEvent.for_path(path))
        except Exception:
            result.errors += 1
            logger.exception("Error processing %s during scan", path)
            return

        if outcome.action is ProcessAction.CREATED:
            result.files_processed += 1
        elif outcome.action is ProcessAction.SKIPPED:
            result.files_skipped += 1
        else:
            result.errors += 1
            logger.warning("File processing failed during scan: %s (%s)", path, outcome.reason)
