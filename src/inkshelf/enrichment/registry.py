"""
Source registry for metadata sources.

The registry keeps the configured sources and hands them out in priority
order, optionally filtered by content category.

Sort order is (priority, name) so ties never reorder between runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from dataclasses import field as dataclass_field

from inkshelf.models import ContentCategory

from .sources.base import MetadataSource

logger = logging.getLogger(__name__)


@dataclass
class SourceRegistry:
    """Registry for metadata sources.

    Instance-based; each pipeline (and each test) builds its own.

    Example:
        registry = SourceRegistry()
        registry.register(OpenLibrarySource(settings.openlibrary))
        registry.register(AniListSource(settings.anilist))

        for source in registry.for_category(ContentCategory.COMIC):
            candidates = await source.search(query)
    """

    _sources: dict[str, MetadataSource] = dataclass_field(default_factory=dict)

    def register(self, source: MetadataSource) -> None:
        """Register a source, replacing any source with the same name."""
        if source.name in self._sources:
            logger.warning("Overwriting existing source %s with new instance", source.name)
        self._sources[source.name] = source
        logger.debug("Registered source: %s (priority=%d)", source.name, source.priority)

    def unregister(self, name: str) -> bool:
        """Unregister a source by name.

        Returns:
            True if the source was found and removed
        """
        if name in self._sources:
            del self._sources[name]
            logger.debug("Unregistered source: %s", name)
            return True
        return False

    def get(self, name: str) -> MetadataSource | None:
        return self._sources.get(name)

    def all(self) -> list[MetadataSource]:
        """All registered sources sorted by (priority, name)."""
        return sorted(self._sources.values(), key=lambda s: (s.priority, s.name))

    def for_category(self, category: ContentCategory) -> list[MetadataSource]:
        """Configured sources serving ``category``, in priority order.

        Sources missing credentials are left out so automatic enrichment
        never counts them as attempts.
        """
        return [s for s in self.all() if s.category is category and s.configured]

    def available(self, category: ContentCategory | None = None) -> list[MetadataSource]:
        """Configured sources, optionally restricted to one category."""
        return [
            s for s in self.all() if s.configured and (category is None or s.category is category)
        ]

    def names(self) -> list[str]:
        return [s.name for s in self.all()]

    async def aclose(self) -> None:
        """Close every source's HTTP client."""
        for source in self.all():
            await source.aclose()

    def clear(self) -> None:
        """Remove all registered sources."""
        self._sources.clear()
        logger.debug("Cleared all sources from registry")

    def __len__(self) -> int:
        return len(self._sources)

    def __contains__(self, name: str) -> bool:
        return name in self._sources
