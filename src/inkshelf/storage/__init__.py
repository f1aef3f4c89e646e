"""SQLAlchemy storage layer for content records."""

from .base import Base
from .engine import Database, create_db_engine
from .repository import ContentRepository

__all__ = ["Base", "Database", "ContentRepository", "create_db_engine"]
