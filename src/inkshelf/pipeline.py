"""
Pipeline runtime: builds every service from settings and owns their lifecycle.

Usage:
    pipeline = Pipeline.from_settings(get_env_settings())
    await pipeline.start()
    ...
    await pipeline.shutdown()

Shutdown order: watcher, scheduled jobs, background enrichments, subscriber
connections, HTTP clients, database engine.
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from inkshelf.broadcaster import EventBroadcaster, SessionValidator
from inkshelf.enrichment import (
    CoverStore,
    EnrichmentOrchestrator,
    MetadataSearchService,
    QuarantineService,
    SourceRegistry,
)
from inkshelf.enrichment.sources import (
    AniListSource,
    GoogleBooksSource,
    MangaDexSource,
    MetadataSource,
    MyAnimeListSource,
    OpenLibrarySource,
)
from inkshelf.env_settings import EnvSettings
from inkshelf.ingestion import IngestionOrchestrator
from inkshelf.library import LibraryService
from inkshelf.models import Principal
from inkshelf.scan import ScanService
from inkshelf.scheduler import Scheduler
from inkshelf.storage import ContentRepository, Database
from inkshelf.watcher import DirectoryWatcher, WatcherConfig

logger = logging.getLogger(__name__)

SHUTDOWN_DRAIN_TIMEOUT = 10.0


def reject_all_sessions(_token: str) -> Principal | None:
    """Session validator used when no auth layer is attached."""
    return None


def build_sources(settings: EnvSettings, *, max_wait: float | None = None) -> list[MetadataSource]:
    """One adapter per configured catalog, each with its own client and rate limiter."""
    wait = settings.app.rate_limit_max_wait if max_wait is None else max_wait
    s = settings.sources
    return [
        OpenLibrarySource(s.openlibrary, max_wait=wait),
        GoogleBooksSource(s.googlebooks, max_wait=wait),
        AniListSource(s.anilist, max_wait=wait),
        MyAnimeListSource(s.myanimelist, max_wait=wait),
        MangaDexSource(s.mangadex, max_wait=wait),
    ]


def build_registry(sources: list[MetadataSource]) -> SourceRegistry:
    registry = SourceRegistry()
    for source in sources:
        registry.register(source)
        if not source.configured:
            logger.info("%s is not configured and will be skipped", source.label)
    return registry


class Pipeline:
    """Composition root for the ingestion and enrichment services."""

    def __init__(
        self,
        settings: EnvSettings,
        *,
        database: Database | None = None,
        registry: SourceRegistry | None = None,
        session_validator: SessionValidator = reject_all_sessions,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings
        app = settings.app

        self.database = database or Database(app.resolved_database_url)
        self.repository = ContentRepository(self.database)
        self.broadcaster = EventBroadcaster(
            session_validator, heartbeat_interval=app.heartbeat_interval
        )
        self.registry = registry if registry is not None else build_registry(build_sources(settings))
        self.covers = CoverStore(app.data_dir, client=http_client)
        self.quarantine = QuarantineService(self.repository, self.broadcaster)
        self.enrichment = EnrichmentOrchestrator(
            self.repository, self.registry, self.broadcaster, self.covers, self.quarantine
        )
        self.search = MetadataSearchService(self.registry)
        self.library = LibraryService(self.repository, self.broadcaster)
        self.ingestion = IngestionOrchestrator(
            self.repository,
            self.broadcaster,
            self.covers,
            self.enrichment,
            enrich_in_background=app.enrich_in_background,
        )
        self.watcher_config = WatcherConfig.from_settings(settings.watcher)
        self.watcher = DirectoryWatcher(self.watcher_config, self.ingestion.process)
        self.scan = ScanService(
            self.watcher_config, self.ingestion, self.repository, self.broadcaster
        )
        self.scheduler = Scheduler()
        self._started = False
        self._closed = False

    @classmethod
    def from_settings(cls, settings: EnvSettings, **kwargs: object) -> Pipeline:
        return cls(settings, **kwargs)  # type: ignore[arg-type]

    def init_storage(self) -> None:
        """Create tables and the data directory (safe to call repeatedly)."""
        self.settings.app.data_dir.mkdir(parents=True, exist_ok=True)
        self.database.create_all()

    async def start(self, *, watch: bool = True) -> bool:
        """Create storage, start the watcher and the recurring jobs.

        Returns:
            True if the directory watcher is running
        """
        if self._started:
            return self.watcher.running
        await asyncio.to_thread(self.init_storage)
        self._started = True

        watching = self.watcher.start() if watch else False
        self.scheduler.every("heartbeat", self.settings.app.heartbeat_interval, self.broadcaster.heartbeat)
        if self.settings.app.scan_interval > 0:
            self.scheduler.every("scan", self.settings.app.scan_interval, self._periodic_scan)
        logger.info(
            "Pipeline started (watcher %s, %d source(s) available)",
            "running" if watching else "disabled",
            len(self.registry.available()),
        )
        return watching

    async def _periodic_scan(self) -> None:
        if self.scan.is_scan_running():
            logger.debug("Skipping periodic scan: a scan is already running")
            return
        await self.scan.trigger_force_scan()

    async def shutdown(self) -> None:
        """Stop everything. Idempotent."""
        if self._closed:
            return
        self._closed = True
        await self.watcher.stop()
        await self.scheduler.cancel_all()
        await self.ingestion.drain(SHUTDOWN_DRAIN_TIMEOUT)
        await self.broadcaster.close_all()
        await self.registry.aclose()
        await self.covers.aclose()
        await asyncio.to_thread(self.database.dispose)
        logger.info("Pipeline stopped")

    async def __aenter__(self) -> Pipeline:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()
