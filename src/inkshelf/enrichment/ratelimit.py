"""Per-source rolling-window rate limiting.

Each source owns one RateLimiter for the life of the process; every search
against that source, automatic or manual, draws from the same budget. The
limiter is only touched from the event loop thread, so no locking is needed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable

from inkshelf.exceptions import SourceRateLimitedError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Allow at most ``max_requests`` in any ``window_seconds`` span.

    Example:
        limiter = RateLimiter(5, 1.0, name="mangadex")
        await limiter.acquire(max_wait=2.0)  # waits or raises SourceRateLimitedError
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        *,
        name: str = "source",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.name = name
        self._clock = clock
        self._timestamps: deque[float] = deque()

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    def remaining(self) -> int:
        """Requests still available in the current window."""
        self._prune(self._clock())
        return self.max_requests - len(self._timestamps)

    def wait_time(self) -> float:
        """Seconds until the next request would be allowed (0 if now)."""
        now = self._clock()
        self._prune(now)
        if len(self._timestamps) < self.max_requests:
            return 0.0
        return max(0.0, self._timestamps[0] + self.window_seconds - now)

    def try_acquire(self) -> bool:
        """Take a slot if one is free right now."""
        now = self._clock()
        self._prune(now)
        if len(self._timestamps) >= self.max_requests:
            return False
        self._timestamps.append(now)
        return True

    async def acquire(self, max_wait: float | None = None) -> None:
        """Take a slot, sleeping until one frees up.

        Args:
            max_wait: Longest total time to wait. None waits indefinitely.

        Raises:
            SourceRateLimitedError: The next slot is further away than max_wait
        """
        deadline = None if max_wait is None else self._clock() + max_wait
        while not self.try_acquire():
            delay = self.wait_time()
            if deadline is not None and self._clock() + delay > deadline:
                logger.warning(
                    "%s rate limit exhausted (%d per %.0fs), next slot in %.1fs",
                    self.name,
                    self.max_requests,
                    self.window_seconds,
                    delay,
                )
                raise SourceRateLimitedError(
                    f"{self.name} rate limit exhausted", retry_after=delay, source=self.name
                )
            logger.debug("%s rate limited, waiting %.2fs", self.name, delay)
            await asyncio.sleep(delay)
