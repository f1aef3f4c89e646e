"""Named recurring asyncio tasks (heartbeat, periodic scan)."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

JobFactory = Callable[[], Awaitable[object]]


class Scheduler:
    """Run coroutine factories every N seconds until cancelled.

    A failing run is logged and the job keeps its schedule. Registering a
    name twice replaces the earlier job.

    Example:
        scheduler = Scheduler()
        scheduler.every("heartbeat", 30, broadcaster.heartbeat)
        ...
        await scheduler.cancel_all()
    """

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def names(self) -> list[str]:
        return sorted(self._tasks)

    def every(self, name: str, interval: float, job: JobFactory, *, run_immediately: bool = False) -> None:
        """Schedule ``job`` every ``interval`` seconds. Needs a running loop."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        existing = self._tasks.pop(name, None)
        if existing is not None:
            existing.cancel()
        self._tasks[name] = asyncio.get_running_loop().create_task(
            self._loop(name, interval, job, run_immediately), name=f"inkshelf-{name}"
        )
        logger.debug("Scheduled %s every %.1fs", name, interval)

    async def _loop(self, name: str, interval: float, job: JobFactory, run_immediately: bool) -> None:
        try:
            if not run_immediately:
                await asyncio.sleep(interval)
            while True:
                try:
                    await job()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception("Scheduled job %s failed", name)
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.debug("Scheduled job %s cancelled", name)
            raise

    async def cancel(self, name: str) -> bool:
        task = self._tasks.pop(name, None)
        if task is None:
            return False
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return True

    async def cancel_all(self) -> None:
        """Cancel every job and wait for them to finish."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
