"""
Real-time event fan-out to connected subscribers.

Subscribers are transport objects (WebSocket connections in the HTTP layer,
fakes in tests) that satisfy the Subscriber protocol. Every subscriber must
present a valid session token on connect.

Wire format (serialized once per broadcast)::

    {"type": "file.detected", "payload": {...}, "timestamp": "2026-01-01T00:00:00.000Z"}

Delivery is best effort: nothing is queued for disconnected clients, and a
subscriber whose send fails is dropped.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from inkshelf.exceptions import AuthenticationError
from inkshelf.models import Principal

logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_INTERVAL = 30.0


class EventType(str, Enum):
    """Event names, ``resource.action``."""

    FILE_DETECTED = "file.detected"
    SCAN_COMPLETED = "scan.completed"
    ENRICHMENT_STARTED = "enrichment.started"
    ENRICHMENT_PROGRESS = "enrichment.progress"
    ENRICHMENT_COMPLETED = "enrichment.completed"
    ENRICHMENT_FAILED = "enrichment.failed"
    CONTENT_UPDATED = "content.updated"


@runtime_checkable
class Subscriber(Protocol):
    """Push channel to one client."""

    async def send(self, message: str) -> None: ...

    async def ping(self) -> None: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


SessionValidator = Callable[[str], "Principal | None | Awaitable[Principal | None]"]


def utc_timestamp(now: datetime | None = None) -> str:
    """ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    now = now or datetime.now(UTC)
    return now.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_envelope(event_type: EventType | str, payload: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": EventType(event_type).value,
        "payload": payload,
        "timestamp": utc_timestamp(),
    }


class EventBroadcaster:
    """Authenticated subscriber registry with JSON fan-out and heartbeat.

    Example:
        broadcaster = EventBroadcaster(session_validator=sessions.lookup)
        principal = await broadcaster.connect(ws, token)
        await broadcaster.broadcast(EventType.FILE_DETECTED, {...})
    """

    def __init__(
        self,
        session_validator: SessionValidator,
        *,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
    ) -> None:
        self.session_validator = session_validator
        self.heartbeat_interval = heartbeat_interval
        self._subscribers: dict[Subscriber, Principal] = {}
        self._alive: dict[Subscriber, bool] = {}

    @property
    def connected_count(self) -> int:
        return len(self._subscribers)

    def principal_for(self, subscriber: Subscriber) -> Principal | None:
        return self._subscribers.get(subscriber)

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def connect(self, subscriber: Subscriber, session_token: str | None) -> Principal:
        """Authenticate and register a subscriber.

        Raises:
            AuthenticationError: Missing or invalid session token. The
                subscriber is not registered.
        """
        if not session_token:
            logger.warning("Subscriber rejected: no session token")
            raise AuthenticationError("Authentication required")

        result = self.session_validator(session_token)
        principal = await result if inspect.isawaitable(result) else result
        if principal is None:
            logger.warning("Subscriber rejected: invalid or expired session")
            raise AuthenticationError("Invalid or expired session")

        self._subscribers[subscriber] = principal
        self._alive[subscriber] = True
        logger.info(
            "Subscriber connected: %s (%s), %d connected",
            principal.username,
            principal.role.value,
            self.connected_count,
        )
        return principal

    def disconnect(self, subscriber: Subscriber) -> None:
        """Forget a subscriber. Unknown subscribers are ignored."""
        principal = self._subscribers.pop(subscriber, None)
        self._alive.pop(subscriber, None)
        if principal is not None:
            logger.info(
                "Subscriber disconnected: %s, %d connected",
                principal.username,
                self.connected_count,
            )

    def mark_alive(self, subscriber: Subscriber) -> None:
        """Record a pong (or any client traffic) from a subscriber."""
        if subscriber in self._subscribers:
            self._alive[subscriber] = True

    async def close_all(self) -> None:
        """Close every subscriber connection (shutdown)."""
        subscribers = list(self._subscribers)
        for subscriber in subscribers:
            await self._close_quietly(subscriber, 1001, "Server shutting down")
            self.disconnect(subscriber)

    # =========================================================================
    # Fan-out
    # =========================================================================

    async def broadcast(self, event_type: EventType | str, payload: dict[str, Any]) -> int:
        """Send an event to every connected subscriber.

        Returns:
            Number of subscribers the message was delivered to
        """
        envelope = build_envelope(event_type, payload)
        message = json.dumps(envelope, default=str)
        logger.debug("Broadcasting %s to %d subscriber(s)", envelope["type"], self.connected_count)

        subscribers = list(self._subscribers)
        if not subscribers:
            return 0
        results = await asyncio.gather(
            *(subscriber.send(message) for subscriber in subscribers),
            return_exceptions=True,
        )

        delivered = 0
        for subscriber, result in zip(subscribers, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning("Dropping subscriber after failed send: %s", result)
                self.disconnect(subscriber)
            else:
                delivered += 1
        return delivered

    async def heartbeat(self) -> None:
        """Close subscribers that missed the previous ping, ping the rest."""
        for subscriber in list(self._subscribers):
            if not self._alive.get(subscriber, False):
                logger.info("Closing unresponsive subscriber")
                await self._close_quietly(subscriber, 1001, "Heartbeat timeout")
                self.disconnect(subscriber)
                continue
            self._alive[subscriber] = False
            try:
                await subscriber.ping()
            except Exception as e:
                logger.warning("Ping failed, dropping subscriber: %s", e)
                self.disconnect(subscriber)

    async def _close_quietly(self, subscriber: Subscriber, code: int, reason: str) -> None:
        try:
            await subscriber.close(code, reason)
        except Exception as e:
            logger.debug("Error closing subscriber: %s", e)
