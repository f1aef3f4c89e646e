"""Library-level record operations: visibility and role-based access."""

from __future__ import annotations

import logging

from inkshelf.broadcaster import EventBroadcaster, EventType
from inkshelf.exceptions import InvalidVisibilityError
from inkshelf.models import ContentRecord, Principal, Role, Visibility
from inkshelf.storage import ContentRepository

logger = logging.getLogger(__name__)


def parse_visibility(value: Visibility | str) -> Visibility:
    """Accept a Visibility or its string value ("public" / "private").

    Raises:
        InvalidVisibilityError: Anything else
    """
    if isinstance(value, Visibility):
        return value
    if isinstance(value, str):
        try:
            return Visibility(value.strip().lower())
        except ValueError:
            pass
    raise InvalidVisibilityError(value)


def can_view(record: ContentRecord, viewer: Principal | Role) -> bool:
    """Admins see everything; users only see public records."""
    role = viewer.role if isinstance(viewer, Principal) else viewer
    if role is Role.ADMIN:
        return True
    return record.visibility is Visibility.PUBLIC


class LibraryService:
    """Operator operations on content records outside the enrichment flow."""

    def __init__(
        self, repository: ContentRepository, broadcaster: EventBroadcaster | None = None
    ) -> None:
        self.repository = repository
        self.broadcaster = broadcaster

    async def set_visibility(self, record_id: int, visibility: Visibility | str) -> ContentRecord:
        """Change a record's visibility.

        Raises:
            InvalidVisibilityError: Value is not public/private
            RecordNotFoundError: Unknown record id
        """
        target = parse_visibility(visibility)
        record = await self.repository.set_visibility(record_id, target)
        logger.info("Record %d visibility set to %s", record_id, target.value)
        if self.broadcaster is not None:
            await self.broadcaster.broadcast(
                EventType.CONTENT_UPDATED,
                {"bookId": record_id, "fieldsUpdated": ["visibility"], "visibility": target.value},
            )
        return record

    can_view = staticmethod(can_view)
