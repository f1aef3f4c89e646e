"""
Ingestion orchestrator: DetectionEvent -> validated pending record.

Steps for one file:
1. Dedup by canonical path (existing record -> skipped)
2. Classify by extension (epub -> book, cbz/cbr -> comic)
3. Validate the container; invalid files are logged and dropped
4. Insert a pending record seeded from embedded metadata
5. Extract the cover seed into the covers directory (best effort)
6. Emit file.detected
7. Hand off to enrichment (inline or as a tracked background task)

The database unique index is the only duplicate guard; two concurrent
events for the same path end with one created and one skipped.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC
from pathlib import Path, PurePosixPath

from inkshelf.broadcaster import EventBroadcaster, EventType, utc_timestamp
from inkshelf.enrichment import CoverStore, EnrichmentOrchestrator
from inkshelf.exceptions import DuplicateRecordError, StorageError
from inkshelf.models import (
    ContentRecord,
    DetectionEvent,
    FileKind,
    ProcessAction,
    ProcessResult,
    title_from_filename,
)
from inkshelf.storage import ContentRepository
from inkshelf.validators import ValidationResult, read_member, validate

logger = logging.getLogger(__name__)

ALREADY_EXISTS_REASON = "File already exists in database"


class IngestionOrchestrator:
    """Turn detection events into content records and start enrichment.

    Args:
        repository: Content record repository
        broadcaster: Event fan-out
        covers: Cover storage for archive seeds
        enricher: Enrichment orchestrator (None = records stay pending)
        enrich_in_background: Schedule enrichment as a task instead of awaiting it
    """

    def __init__(
        self,
        repository: ContentRepository,
        broadcaster: EventBroadcaster,
        covers: CoverStore,
        enricher: EnrichmentOrchestrator | None = None,
        *,
        enrich_in_background: bool = True,
    ) -> None:
        self.repository = repository
        self.broadcaster = broadcaster
        self.covers = covers
        self.enricher = enricher
        self.enrich_in_background = enrich_in_background
        self._background: set[asyncio.Task[object]] = set()

    @property
    def pending_enrichments(self) -> int:
        return len(self._background)

    async def process(self, event: DetectionEvent) -> ProcessResult:
        """Ingest one detected file. Never raises for per-file problems."""
        file_path = str(event.file_path.resolve())

        existing = await self.repository.get_by_path(file_path)
        if existing is not None:
            logger.debug("Skipping %s: %s", event.filename, ALREADY_EXISTS_REASON)
            return ProcessResult(ProcessAction.SKIPPED, ALREADY_EXISTS_REASON, existing)

        kind = FileKind.from_extension(event.extension)
        if kind is None:
            reason = f"Unsupported file type: {event.extension}"
            logger.warning("Rejected %s: %s", event.filename, reason)
            return ProcessResult(ProcessAction.FAILED, reason)

        validation = await asyncio.to_thread(validate, event.file_path)
        if not validation.valid:
            logger.warning("Invalid %s file %s: %s", kind.value, event.filename, validation.reason)
            return ProcessResult(ProcessAction.FAILED, validation.reason)

        try:
            record = await self._create_record(file_path, kind, event.filename, validation)
        except DuplicateRecordError:
            logger.debug("Concurrent insert for %s, skipping", event.filename)
            return ProcessResult(ProcessAction.SKIPPED, ALREADY_EXISTS_REASON)
        except StorageError as e:
            logger.error("Failed to create record for %s: %s", event.filename, e)
            return ProcessResult(ProcessAction.FAILED, str(e))

        record = await self._seed_cover(record, validation)
        logger.info(
            "Ingested %s as record %d (%s, %s)",
            event.filename,
            record.id,
            record.category.value,
            "embedded metadata" if record.has_embedded_metadata else "filename title",
        )

        await self.broadcaster.broadcast(
            EventType.FILE_DETECTED,
            {
                "filename": event.filename,
                "contentType": record.category.value,
                "bookId": record.id,
                "timestamp": utc_timestamp(event.detected_at.astimezone(UTC)),
            },
        )

        await self._start_enrichment(record.id)
        return ProcessResult(ProcessAction.CREATED, record=record)

    async def _create_record(
        self, file_path: str, kind: FileKind, filename: str, validation: ValidationResult
    ) -> ContentRecord:
        seed = validation.metadata.as_fields() if validation.metadata else {}
        title = seed.pop("title", None) or title_from_filename(filename)
        return await self.repository.create(
            file_path=file_path,
            file_kind=kind,
            title=title,
            has_embedded_metadata=validation.has_embedded_metadata,
            **seed,
        )

    async def _seed_cover(self, record: ContentRecord, validation: ValidationResult) -> ContentRecord:
        """Copy the validator's first asset into the covers directory."""
        member = validation.first_asset
        if not member:
            return record
        try:
            data = await asyncio.to_thread(read_member, Path(record.file_path), member)
            ext = PurePosixPath(member).suffix.lower() or ".jpg"
            cover_path = await self.covers.save_bytes(record.id, data, ext)
            return await self.repository.update_fields(record.id, {"cover_path": cover_path})
        except Exception as e:
            logger.warning("Could not extract cover for record %d: %s", record.id, e)
            return record

    async def _start_enrichment(self, record_id: int) -> None:
        if self.enricher is None:
            return
        if not self.enrich_in_background:
            await self._enrich(record_id)
            return
        task = asyncio.get_running_loop().create_task(
            self._enrich(record_id), name=f"enrich-{record_id}"
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _enrich(self, record_id: int) -> None:
        assert self.enricher is not None
        try:
            await self.enricher.enrich(record_id)
        except Exception:
            # The record stays pending; ingestion is never rolled back
            logger.exception("Enrichment of record %d failed", record_id)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for background enrichments; cancel whatever is left after ``timeout``."""
        if not self._background:
            return
        tasks = list(self._background)
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning("Cancelled %d unfinished enrichment task(s)", len(pending))
            await asyncio.gather(*pending, return_exceptions=True)

