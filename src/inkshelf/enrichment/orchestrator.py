"""
Metadata enrichment orchestrator.

Automatic enrichment walks the configured sources for a record's category in
priority order and stops at the first acceptable match:

    enrichment.started
    for each source:
        enrichment.progress  <source>-search-started
        search (ISBN first, then title/author)
        enrichment.progress  <source>-no-match | <source>-match-found
    match  -> merge (fill-missing), cover, enriched, enrichment.completed
    none   -> quarantine with a source-attributed reason, enrichment.failed

Manual apply (operator picked a candidate) overwrites fields and always ends
in ``enriched``.
"""

from __future__ import annotations

import logging
from typing import Any

from inkshelf.broadcaster import EventBroadcaster, EventType
from inkshelf.exceptions import InvalidTransitionError, SourceClientError, SourceError
from inkshelf.models import (
    ApplyResult,
    ContentRecord,
    ContentStatus,
    EnrichmentAttempt,
    EnrichmentOutcome,
    MetadataCandidate,
)
from inkshelf.storage import ContentRepository

from .covers import CoverStore
from .mapping import build_updates
from .matching import select_best_match
from .quarantine import QuarantineService, build_failure_reason
from .registry import SourceRegistry
from .sources.base import MetadataSource, SearchQuery

logger = logging.getLogger(__name__)

MANUAL_SOURCE = "manual"


def attempt_outcome(source: MetadataSource, exc: Exception) -> EnrichmentAttempt:
    """Classify a failed search into a quarantine-reason fragment."""
    if isinstance(exc, SourceClientError) and exc.status_code is not None:
        outcome = f"client error (HTTP {exc.status_code})"
    elif isinstance(exc, SourceError):
        outcome = exc.outcome
    else:
        outcome = "error"
    detail = None if isinstance(exc, SourceError) else str(exc) or type(exc).__name__
    return EnrichmentAttempt(source=source.name, label=source.label, outcome=outcome, detail=detail)


class EnrichmentOrchestrator:
    """Run automatic enrichment and manual apply for content records."""

    def __init__(
        self,
        repository: ContentRepository,
        registry: SourceRegistry,
        broadcaster: EventBroadcaster,
        covers: CoverStore,
        quarantine: QuarantineService | None = None,
    ) -> None:
        self.repository = repository
        self.registry = registry
        self.broadcaster = broadcaster
        self.covers = covers
        self.quarantine = quarantine or QuarantineService(repository, broadcaster)

    async def _progress(self, record_id: int, step: str, **details: Any) -> None:
        await self.broadcaster.broadcast(
            EventType.ENRICHMENT_PROGRESS, {"bookId": record_id, "step": step, **details}
        )

    # =========================================================================
    # Automatic enrichment
    # =========================================================================

    async def enrich(self, record_id: int) -> EnrichmentOutcome:
        """Enrich a pending record from external sources.

        Never raises for source failures: every failure ends in quarantine.
        Only pending records are enriched automatically; quarantined records
        leave quarantine through apply() alone.

        Raises:
            RecordNotFoundError: Unknown record id
            InvalidTransitionError: Record is not pending
        """
        record = await self.repository.require(record_id)
        if record.status is not ContentStatus.PENDING:
            raise InvalidTransitionError(
                record_id, record.status.value, ContentStatus.ENRICHED.value
            )
        await self.broadcaster.broadcast(
            EventType.ENRICHMENT_STARTED,
            {"bookId": record.id, "contentType": record.category.value},
        )

        attempts: list[EnrichmentAttempt] = []
        try:
            outcome = await self._run_sources(record, attempts)
            if outcome is not None:
                return outcome
            reason = build_failure_reason(attempts)
            sources_attempted = [a.source for a in attempts]
        except Exception as e:
            logger.exception("Unexpected error enriching record %d", record_id)
            reason = f"orchestrator: {str(e) or type(e).__name__}"
            sources_attempted = ["orchestrator"]

        quarantined = await self.quarantine.move_to_quarantine(
            record_id, reason, sources_attempted
        )
        return EnrichmentOutcome(record=quarantined, attempts=attempts, failure_reason=reason)

    async def _run_sources(
        self, record: ContentRecord, attempts: list[EnrichmentAttempt]
    ) -> EnrichmentOutcome | None:
        sources = self.registry.for_category(record.category)
        if not sources:
            logger.warning("No %s sources configured for record %d", record.category.value, record.id)
            return None

        query = SearchQuery.for_record(record)
        for source in sources:
            await self._progress(record.id, f"{source.name}-search-started", title=record.title)
            try:
                candidates = await source.search(query)
                match = self._select(candidates, record)
                if match is None:
                    attempts.append(EnrichmentAttempt(source.name, source.label, "no match"))
                    await self._progress(record.id, f"{source.name}-no-match")
                    continue
                match = await source.complete(match)
            except Exception as e:
                attempt = attempt_outcome(source, e)
                attempts.append(attempt)
                logger.warning("%s search failed for record %d: %s", source.label, record.id, e)
                await self._progress(record.id, f"{source.name}-failed", error=attempt.outcome)
                continue

            attempts.append(EnrichmentAttempt(source.name, source.label, "matched"))
            await self._progress(
                record.id,
                f"{source.name}-match-found",
                matchTitle=match.title,
                matchAuthor=match.author,
            )
            return await self._finish(record, match, attempts, source_name=source.name)
        return None

    @staticmethod
    def _select(candidates: list[MetadataCandidate], record: ContentRecord) -> MetadataCandidate | None:
        if not candidates:
            return None
        # An ISBN hit is an exact identification
        if record.isbn and any(c.isbn == record.isbn for c in candidates):
            return next(c for c in candidates if c.isbn == record.isbn)
        return select_best_match(candidates, record.title, record.author)

    async def _finish(
        self,
        record: ContentRecord,
        match: MetadataCandidate,
        attempts: list[EnrichmentAttempt],
        *,
        source_name: str,
    ) -> EnrichmentOutcome:
        updates = build_updates(record, match, overwrite=False)
        cover_path = await self._maybe_download_cover(record, match, force=False)
        if cover_path:
            updates["cover_path"] = cover_path

        enriched = await self.repository.transition(
            record.id,
            ContentStatus.ENRICHED,
            enrichment_source=source_name,
            fields=updates,
        )
        logger.info(
            "Record %d enriched from %s (%s)",
            record.id,
            source_name,
            ", ".join(updates) or "no field changes",
        )
        await self.broadcaster.broadcast(
            EventType.ENRICHMENT_COMPLETED,
            {
                "bookId": record.id,
                "source": source_name,
                "contentType": record.category.value,
                "fieldsUpdated": list(updates),
            },
        )
        return EnrichmentOutcome(record=enriched, attempts=attempts, source=source_name)

    async def _maybe_download_cover(
        self, record: ContentRecord, candidate: MetadataCandidate, *, force: bool
    ) -> str | None:
        """Download the candidate cover if the record lacks a good one."""
        if not candidate.cover_url:
            return None
        if not force and not self.covers.is_low_quality(record.cover_path):
            return None
        return await self.covers.download(candidate.cover_url, record.id)

    # =========================================================================
    # Manual apply
    # =========================================================================

    async def apply(self, record_id: int, candidate: MetadataCandidate | dict[str, Any]) -> ApplyResult:
        """Apply an operator-selected candidate, overwriting existing fields.

        Re-applying the same candidate leaves the record unchanged apart from
        ``updated_at``.

        Raises:
            RecordNotFoundError: Unknown record id
            pydantic.ValidationError: Candidate payload is malformed
        """
        if not isinstance(candidate, MetadataCandidate):
            candidate = MetadataCandidate.model_validate(candidate)

        record = await self.repository.require(record_id)
        updates = build_updates(record, candidate, overwrite=True)
        cover_path = await self._maybe_download_cover(record, candidate, force=True)
        if cover_path and cover_path != record.cover_path:
            updates["cover_path"] = cover_path

        updated = await self.repository.transition(
            record_id,
            ContentStatus.ENRICHED,
            enrichment_source=MANUAL_SOURCE,
            fields=updates,
        )
        fields_updated = list(updates)
        logger.info(
            "Applied %s candidate %s to record %d (%d fields)",
            candidate.source,
            candidate.external_id,
            record_id,
            len(fields_updated),
        )

        await self.broadcaster.broadcast(
            EventType.ENRICHMENT_COMPLETED,
            {
                "bookId": record_id,
                "source": MANUAL_SOURCE,
                "contentType": updated.category.value,
                "fieldsUpdated": fields_updated,
            },
        )
        await self.broadcaster.broadcast(
            EventType.CONTENT_UPDATED,
            {"bookId": record_id, "fieldsUpdated": fields_updated, "status": updated.status.value},
        )
        return ApplyResult(
            record_id=record_id,
            fields_updated=fields_updated,
            cover_downloaded=cover_path is not None,
            record=updated,
        )

    apply_metadata = apply
