"""Directory watcher: turns filesystem notifications into DetectionEvents.

watchdog's observer thread only forwards raw paths into the asyncio loop;
filtering, write-stability polling and the callback all run on the loop.

Lifecycle:
    watcher = DirectoryWatcher(config, ingestion.process)
    watcher.start()          # False if the root is missing/unreadable
    ...
    await watcher.stop()     # idempotent
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from inkshelf.env_settings import WatcherEnvSettings
from inkshelf.exceptions import ConfigurationError
from inkshelf.models import SUPPORTED_EXTENSIONS, DetectionEvent

logger = logging.getLogger(__name__)

DetectionCallback = Callable[[DetectionEvent], Awaitable[Any]]

# Partial-download / in-progress markers
DEFAULT_IGNORED_SUFFIXES: tuple[str, ...] = (".part", ".tmp", ".crdownload", ".download")

MIN_STABILITY_THRESHOLD = 0.5
MIN_POLL_INTERVAL = 0.05


@dataclass
class WatcherConfig:
    """Directory watcher configuration.

    Attributes:
        watch_dir: Root directory to watch (None = not configured)
        supported_extensions: Lower-case extensions with leading dot
        ignored_suffixes: Partial-download suffixes that are never emitted
        stability_threshold: Seconds the size must stay unchanged
        poll_interval: Seconds between size checks
        use_polling: Use watchdog's PollingObserver instead of native events
    """

    watch_dir: Path | None
    supported_extensions: frozenset[str] = SUPPORTED_EXTENSIONS
    ignored_suffixes: tuple[str, ...] = DEFAULT_IGNORED_SUFFIXES
    stability_threshold: float = 2.0
    poll_interval: float = 0.1
    use_polling: bool = False

    def __post_init__(self) -> None:
        if self.stability_threshold < MIN_STABILITY_THRESHOLD:
            raise ConfigurationError(
                f"stability_threshold must be at least {MIN_STABILITY_THRESHOLD}s",
                field="stability_threshold",
            )
        if self.poll_interval < MIN_POLL_INTERVAL:
            raise ConfigurationError(
                f"poll_interval must be at least {MIN_POLL_INTERVAL}s",
                field="poll_interval",
            )

    @classmethod
    def from_settings(cls, settings: WatcherEnvSettings) -> WatcherConfig:
        return cls(
            watch_dir=Path(settings.dir).expanduser() if settings.dir else None,
            stability_threshold=settings.stability_threshold,
            poll_interval=settings.poll_interval,
            use_polling=settings.use_polling,
        )

    def should_ignore(self, path: Path, root: Path | None = None) -> bool:
        """Check dotfiles, partial-download suffixes and unsupported extensions."""
        relative = path
        base = root or self.watch_dir
        if base is not None:
            try:
                relative = path.relative_to(base)
            except ValueError:
                return True  # Outside the watch root
        if any(part.startswith(".") for part in relative.parts):
            return True
        name = path.name.lower()
        if name.endswith(self.ignored_suffixes):
            return True
        return path.suffix.lower() not in self.supported_extensions


@dataclass
class WatcherStatus:
    running: bool
    watch_dir: str | None
    pending: int = 0
    emitted: int = 0


class _ForwardingHandler(FileSystemEventHandler):
    """Runs on the observer thread; hands paths to the loop."""

    def __init__(self, forward: Callable[[str], None]) -> None:
        self._forward = forward

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(os.fsdecode(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        # Download managers rename "book.epub.part" -> "book.epub" when done
        if not event.is_directory:
            self._forward(os.fsdecode(event.dest_path))


@dataclass
class DirectoryWatcher:
    """Emits one DetectionEvent per newly completed file under the watch root.

    Files present at startup are not emitted; the force scan covers those.
    A path is emitted at most once per watcher run.
    """

    config: WatcherConfig
    callback: DetectionCallback
    _observer: Any = field(default=None, init=False, repr=False)
    _loop: asyncio.AbstractEventLoop | None = field(default=None, init=False, repr=False)
    _root: Path | None = field(default=None, init=False, repr=False)
    _emitted: set[Path] = field(default_factory=set, init=False, repr=False)
    _in_flight: dict[Path, asyncio.Task[Any] | None] = field(
        default_factory=dict, init=False, repr=False
    )
    _tasks: set[asyncio.Task[None]] = field(default_factory=set, init=False, repr=False)

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self) -> bool:
        """Start watching. Must be called from the running event loop.

        Returns:
            True if the watcher is running, False if it disabled itself
        """
        if self._observer is not None:
            return True

        watch_dir = self.config.watch_dir
        if watch_dir is None:
            logger.error("WATCH_DIR is not set - file watcher disabled")
            return False
        if not watch_dir.is_dir():
            logger.error("Watch directory does not exist: %s - file watcher disabled", watch_dir)
            return False
        if not os.access(watch_dir, os.R_OK | os.X_OK):
            logger.error("Watch directory is not readable: %s - file watcher disabled", watch_dir)
            return False

        self._loop = asyncio.get_running_loop()
        self._root = watch_dir.resolve()
        observer = PollingObserver() if self.config.use_polling else Observer()
        try:
            observer.schedule(
                _ForwardingHandler(self._forward_from_thread), str(self._root), recursive=True
            )
            observer.start()
        except OSError as e:
            logger.error("Cannot watch %s: %s - file watcher disabled", watch_dir, e)
            return False

        self._observer = observer
        logger.info(
            "Watching %s for %s (stability %.1fs)",
            self._root,
            ", ".join(sorted(self.config.supported_extensions)),
            self.config.stability_threshold,
        )
        return True

    async def stop(self) -> None:
        """Release the filesystem subscription. Idempotent.

        Files still waiting for their write to finish are abandoned; callbacks
        already running are awaited.
        """
        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            await asyncio.to_thread(observer.join, 5.0)
            logger.info("File watcher stopped")

        for task in list(self._in_flight.values()):
            if task is not None:
                task.cancel()
        tasks = list(self._tasks)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._in_flight.clear()

    def status(self) -> WatcherStatus:
        watch_dir = self.config.watch_dir
        return WatcherStatus(
            running=self.running,
            watch_dir=str(watch_dir) if watch_dir is not None else None,
            pending=len(self._in_flight),
            emitted=len(self._emitted),
        )

    # =========================================================================
    # Event handling
    # =========================================================================

    def _forward_from_thread(self, raw_path: str) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._schedule, Path(raw_path))

    def _schedule(self, path: Path) -> None:
        if self._observer is None:
            return
        task = asyncio.ensure_future(self.notify(path))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def notify(self, path: Path) -> bool:
        """Handle one candidate path: filter, wait for stability, emit.

        Returns:
            True if a DetectionEvent was emitted
        """
        root = self._root
        if root is None and self.config.watch_dir is not None:
            root = self.config.watch_dir.resolve()
        path = path if path.is_absolute() or root is None else root / path
        if self.config.should_ignore(path, root):
            logger.debug("Ignoring %s", path)
            return False
        if path in self._emitted or path in self._in_flight:
            return False

        self._in_flight[path] = asyncio.current_task()
        try:
            if not await self._wait_until_stable(path):
                logger.debug("File vanished before write finished: %s", path)
                return False
            self._emitted.add(path)
        finally:
            self._in_flight.pop(path, None)

        event = DetectionEvent.for_path(path)
        logger.info("New file detected: %s", event.filename)
        try:
            await self.callback(event)
        except Exception:
            logger.exception("Detection callback failed for %s", path)
        return True

    async def _wait_until_stable(self, path: Path) -> bool:
        """Poll the file size until unchanged for stability_threshold seconds."""
        loop = asyncio.get_running_loop()
        last_size = -1
        stable_since = loop.time()
        while True:
            try:
                size = path.stat().st_size
            except FileNotFoundError:
                return False
            now = loop.time()
            if size != last_size:
                last_size = size
                stable_since = now
            elif now - stable_since >= self.config.stability_threshold:
                return True
            await asyncio.sleep(self.config.poll_interval)
