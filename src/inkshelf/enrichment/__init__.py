"""Metadata enrichment: sources, matching, quarantine and manual apply."""

from __future__ import annotations

from .covers import CoverStore
from .orchestrator import EnrichmentOrchestrator
from .quarantine import QuarantineService, build_failure_reason
from .ratelimit import RateLimiter
from .registry import SourceRegistry
from .search import MetadataSearchService

__all__ = [
    "CoverStore",
    "EnrichmentOrchestrator",
    "MetadataSearchService",
    "QuarantineService",
    "RateLimiter",
    "SourceRegistry",
    "build_failure_reason",
]
