"""Content record table."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import JSON, Boolean, CheckConstraint, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class ContentRecordModel(TimestampMixin, Base):
    __tablename__ = "content_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    file_path: Mapped[str] = mapped_column(Text, nullable=False)
    file_kind: Mapped[str] = mapped_column(String(10), nullable=False)
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    author: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    genres: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    series: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    volume: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    isbn: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    publisher: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    language: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    publication_date: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    cover_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    has_embedded_metadata: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    visibility: Mapped[str] = mapped_column(String(10), nullable=False, default="public")
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    enrichment_source: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    __table_args__ = (
        Index("idx_content_file_path", "file_path", unique=True),
        Index("idx_content_status", "status"),
        Index("idx_content_category", "category"),
        Index("idx_content_created_at", "created_at"),
        Index("idx_content_visibility", "visibility"),
        CheckConstraint("visibility IN ('public', 'private')", name="ck_content_visibility"),
        CheckConstraint(
            "status IN ('pending', 'enriched', 'quarantine')", name="ck_content_status"
        ),
        CheckConstraint(
            "status != 'quarantine' OR (failure_reason IS NOT NULL AND failure_reason != '')",
            name="ck_content_quarantine_reason",
        ),
    )
