"""SQLAlchemy engine and session helpers."""

from __future__ import annotations

import contextlib
import logging
import threading
from collections.abc import Iterator
from pathlib import Path

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .base import Base

logger = logging.getLogger(__name__)


def create_db_engine(url: str) -> Engine:
    """Create an engine for ``url``.

    SQLite URLs get a cross-thread connection (sessions run in worker threads)
    and in-memory databases share a single connection.
    """
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return create_engine(url, pool_pre_ping=True, pool_recycle=3600, echo=False)

    database = parsed.database or ""
    in_memory = database in ("", ":memory:")
    if in_memory:
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,
        )
    else:
        Path(database).parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(url, connect_args={"check_same_thread": False}, echo=False)

    @event.listens_for(engine, "connect")
    def _sqlite_pragmas(dbapi_connection, _record):  # type: ignore[no-untyped-def]
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    return engine


class Database:
    """Engine + session factory owned by one pipeline instance.

    Example:
        db = Database("sqlite:///data/inkshelf.db")
        db.create_all()
        with db.session() as session:
            session.add(row)
    """

    def __init__(self, url: str) -> None:
        self.url = url
        self.engine = create_db_engine(url)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        # SQLite allows one writer; serialize sessions opened from worker threads
        self._lock: threading.RLock | None = (
            threading.RLock() if self.engine.dialect.name == "sqlite" else None
        )

    def create_all(self) -> None:
        """Create tables and indexes that do not exist yet."""
        Base.metadata.create_all(self.engine)
        logger.debug("Database schema ready at %s", self.engine.url.render_as_string())

    @contextlib.contextmanager
    def session(self) -> Iterator[Session]:
        """Provide a transactional scope around a series of operations."""
        guard = self._lock if self._lock is not None else contextlib.nullcontext()
        with guard:
            session = self._session_factory()
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    def dispose(self) -> None:
        """Release pooled connections."""
        self.engine.dispose()
