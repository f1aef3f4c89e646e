"""Quarantine transitions, failure reasons and the review queue."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from inkshelf.broadcaster import EventBroadcaster, EventType
from inkshelf.exceptions import ValidationError
from inkshelf.models import ContentRecord, ContentStatus, EnrichmentAttempt
from inkshelf.storage import ContentRepository

logger = logging.getLogger(__name__)

NO_SOURCES_REASON = "No enrichment sources available"


def build_failure_reason(attempts: Sequence[EnrichmentAttempt]) -> str:
    """Human-readable, source-attributed quarantine reason.

    Examples:
        "No enrichment sources available"
        "API timeout on all sources (OpenLibrary, Google Books)"
        "OpenLibrary: no match. Google Books: rate-limited"
    """
    if not attempts:
        return NO_SOURCES_REASON

    failed = [a for a in attempts if not a.matched]
    if not failed:
        return "Unknown enrichment failure"

    if len(failed) == len(attempts) and all(a.outcome == "timeout" for a in failed):
        return f"API timeout on all sources ({', '.join(a.label for a in attempts)})"

    return ". ".join(a.describe() for a in failed)


class QuarantineService:
    """Move records into quarantine and expose the review queue."""

    def __init__(self, repository: ContentRepository, broadcaster: EventBroadcaster) -> None:
        self.repository = repository
        self.broadcaster = broadcaster

    async def move_to_quarantine(
        self,
        record_id: int,
        reason: str,
        sources_attempted: Sequence[str] = (),
    ) -> ContentRecord:
        """Quarantine a record and emit ``enrichment.failed``.

        Raises:
            ValidationError: Empty reason
            RecordNotFoundError: Unknown record id
            InvalidTransitionError: Record is already enriched
        """
        if not reason or not reason.strip():
            raise ValidationError("Quarantine requires a failure reason")

        record = await self.repository.transition(
            record_id, ContentStatus.QUARANTINE, failure_reason=reason
        )
        logger.warning(
            "Record %d moved to quarantine (%s): %s", record_id, record.category.value, reason
        )
        await self.broadcaster.broadcast(
            EventType.ENRICHMENT_FAILED,
            {
                "bookId": record.id,
                "failureReason": reason,
                "contentType": record.category.value,
                "sourcesAttempted": list(sources_attempted),
            },
        )
        return record

    async def list_quarantine(self) -> list[ContentRecord]:
        """Quarantined records, newest first."""
        return await self.repository.list_by_status(ContentStatus.QUARANTINE)

    async def count_quarantine(self) -> dict[str, int]:
        return {"count": await self.repository.count_by_status(ContentStatus.QUARANTINE)}
