"""Content record repository.

The only module that talks to the database. Every public method is a
coroutine that runs its blocking session work in a worker thread, so the
event loop never blocks on SQL.

Design decisions:
- The unique index on file_path is the sole duplicate guard; IntegrityError on
  insert surfaces as DuplicateRecordError
- Status changes go through transition(), which enforces the lifecycle table in
  inkshelf.models.ALLOWED_TRANSITIONS
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from inkshelf.exceptions import (
    DuplicateRecordError,
    InvalidTransitionError,
    RecordNotFoundError,
    StorageError,
    ValidationError,
)
from inkshelf.models import (
    ALLOWED_TRANSITIONS,
    ContentCategory,
    ContentRecord,
    ContentStatus,
    FileKind,
    Visibility,
)

from .base import utcnow
from .engine import Database
from .models import ContentRecordModel

logger = logging.getLogger(__name__)

# Bibliographic columns writable through update_fields()/transition()
MUTABLE_FIELDS: frozenset[str] = frozenset(
    {
        "title",
        "author",
        "description",
        "genres",
        "series",
        "volume",
        "isbn",
        "publisher",
        "language",
        "publication_date",
        "cover_path",
        "has_embedded_metadata",
    }
)


def _to_record(row: ContentRecordModel) -> ContentRecord:
    return ContentRecord(
        id=row.id,
        file_path=row.file_path,
        file_kind=FileKind(row.file_kind),
        category=ContentCategory(row.category),
        title=row.title,
        status=ContentStatus(row.status),
        visibility=Visibility(row.visibility),
        author=row.author,
        description=row.description,
        genres=list(row.genres or []),
        series=row.series,
        volume=row.volume,
        isbn=row.isbn,
        publisher=row.publisher,
        language=row.language,
        publication_date=row.publication_date,
        cover_path=row.cover_path,
        has_embedded_metadata=row.has_embedded_metadata,
        failure_reason=row.failure_reason,
        enrichment_source=row.enrichment_source,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _apply_fields(row: ContentRecordModel, fields: dict[str, Any]) -> None:
    unknown = set(fields) - MUTABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown record fields: {', '.join(sorted(unknown))}")
    for name, value in fields.items():
        if name == "genres":
            value = list(value or [])
        setattr(row, name, value)


class ContentRepository:
    """Async facade over the content_records table."""

    def __init__(self, database: Database) -> None:
        self._db = database

    # =========================================================================
    # Reads
    # =========================================================================

    async def get(self, record_id: int) -> ContentRecord | None:
        return await asyncio.to_thread(self._get, record_id)

    async def require(self, record_id: int) -> ContentRecord:
        """Like get(), but raise RecordNotFoundError for unknown ids."""
        record = await self.get(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        return record

    async def get_by_path(self, file_path: str) -> ContentRecord | None:
        return await asyncio.to_thread(self._get_by_path, file_path)

    async def existing_paths(self, file_paths: Iterable[str]) -> set[str]:
        """Return the subset of ``file_paths`` that already have a record."""
        return await asyncio.to_thread(self._existing_paths, list(file_paths))

    async def list_by_status(self, status: ContentStatus) -> list[ContentRecord]:
        """Records in ``status``, newest first."""
        return await asyncio.to_thread(self._list_by_status, status)

    async def count_by_status(self, status: ContentStatus) -> int:
        return await asyncio.to_thread(self._count_by_status, status)

    # =========================================================================
    # Writes
    # =========================================================================

    async def create(
        self,
        *,
        file_path: str,
        file_kind: FileKind,
        title: str,
        **fields: Any,
    ) -> ContentRecord:
        """Insert a pending record.

        Raises:
            DuplicateRecordError: A record for file_path already exists
        """
        return await asyncio.to_thread(self._create, file_path, file_kind, title, fields)

    async def update_fields(self, record_id: int, fields: dict[str, Any]) -> ContentRecord:
        """Update bibliographic columns without touching status."""
        return await asyncio.to_thread(self._update_fields, record_id, fields)

    async def transition(
        self,
        record_id: int,
        target: ContentStatus,
        *,
        failure_reason: str | None = None,
        enrichment_source: str | None = None,
        fields: dict[str, Any] | None = None,
    ) -> ContentRecord:
        """Move a record to ``target`` and optionally update fields in the same transaction.

        Raises:
            RecordNotFoundError: Unknown id
            InvalidTransitionError: Move not allowed from the current status
            ValidationError: Quarantine without a failure reason
        """
        return await asyncio.to_thread(
            self._transition, record_id, target, failure_reason, enrichment_source, fields or {}
        )

    async def set_visibility(self, record_id: int, visibility: Visibility) -> ContentRecord:
        return await asyncio.to_thread(self._set_visibility, record_id, visibility)

    # =========================================================================
    # Sync implementations (worker thread)
    # =========================================================================

    def _load(self, session: Session, record_id: int) -> ContentRecordModel:
        row = session.get(ContentRecordModel, record_id)
        if row is None:
            raise RecordNotFoundError(record_id)
        return row

    def _get(self, record_id: int) -> ContentRecord | None:
        with self._db.session() as session:
            row = session.get(ContentRecordModel, record_id)
            return _to_record(row) if row is not None else None

    def _get_by_path(self, file_path: str) -> ContentRecord | None:
        with self._db.session() as session:
            row = session.scalars(
                select(ContentRecordModel).where(ContentRecordModel.file_path == file_path)
            ).first()
            return _to_record(row) if row is not None else None

    def _existing_paths(self, file_paths: list[str]) -> set[str]:
        found: set[str] = set()
        if not file_paths:
            return found
        with self._db.session() as session:
            # Chunk to stay under SQLite's bound-parameter limit
            for start in range(0, len(file_paths), 500):
                chunk = file_paths[start : start + 500]
                found.update(
                    session.scalars(
                        select(ContentRecordModel.file_path).where(
                            ContentRecordModel.file_path.in_(chunk)
                        )
                    )
                )
        return found

    def _list_by_status(self, status: ContentStatus) -> list[ContentRecord]:
        with self._db.session() as session:
            rows = session.scalars(
                select(ContentRecordModel)
                .where(ContentRecordModel.status == status.value)
                .order_by(ContentRecordModel.created_at.desc(), ContentRecordModel.id.desc())
            ).all()
            return [_to_record(row) for row in rows]

    def _count_by_status(self, status: ContentStatus) -> int:
        with self._db.session() as session:
            return int(
                session.scalar(
                    select(func.count())
                    .select_from(ContentRecordModel)
                    .where(ContentRecordModel.status == status.value)
                )
                or 0
            )

    def _create(
        self,
        file_path: str,
        file_kind: FileKind,
        title: str,
        fields: dict[str, Any],
    ) -> ContentRecord:
        row = ContentRecordModel(
            file_path=file_path,
            file_kind=file_kind.value,
            category=file_kind.category.value,
            title=title,
            status=ContentStatus.PENDING.value,
            visibility=Visibility.PUBLIC.value,
            genres=[],
        )
        _apply_fields(row, fields)
        try:
            with self._db.session() as session:
                session.add(row)
                session.flush()
                record = _to_record(row)
        except IntegrityError as e:
            raise DuplicateRecordError(file_path) from e
        except SQLAlchemyError as e:
            raise StorageError(f"Database error: {e}", details={"file_path": file_path}) from e
        logger.debug("Created record %d for %s", record.id, file_path)
        return record

    def _update_fields(self, record_id: int, fields: dict[str, Any]) -> ContentRecord:
        with self._db.session() as session:
            row = self._load(session, record_id)
            _apply_fields(row, fields)
            session.flush()
            return _to_record(row)

    def _transition(
        self,
        record_id: int,
        target: ContentStatus,
        failure_reason: str | None,
        enrichment_source: str | None,
        fields: dict[str, Any],
    ) -> ContentRecord:
        with self._db.session() as session:
            row = self._load(session, record_id)
            current = ContentStatus(row.status)
            if target not in ALLOWED_TRANSITIONS[current]:
                raise InvalidTransitionError(record_id, current.value, target.value)

            _apply_fields(row, fields)
            if target is ContentStatus.QUARANTINE:
                if not failure_reason or not failure_reason.strip():
                    raise ValidationError("Quarantine requires a non-empty failure reason")
                row.failure_reason = failure_reason.strip()
            else:
                row.failure_reason = None
            if enrichment_source is not None:
                row.enrichment_source = enrichment_source
            row.status = target.value
            session.flush()
            logger.debug("Record %d: %s -> %s", record_id, current.value, target.value)
            return _to_record(row)

    def _set_visibility(self, record_id: int, visibility: Visibility) -> ContentRecord:
        with self._db.session() as session:
            row = self._load(session, record_id)
            row.visibility = visibility.value
            row.updated_at = utcnow()
            session.flush()
            return _to_record(row)
