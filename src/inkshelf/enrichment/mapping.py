"""Copy candidate fields onto a content record.

Two modes:
- fill-missing (automatic enrichment): only empty record fields are set. A
  title derived from the filename counts as empty.
- overwrite (manual apply): every field the candidate carries wins.

Genres are deduplicated preserving first-seen order, so applying the same
candidate twice yields identical values.
"""

from __future__ import annotations

from typing import Any

from inkshelf.models import UNKNOWN_AUTHOR, ContentRecord, MetadataCandidate

# Record fields a candidate can populate, in display order
MAPPED_FIELDS: tuple[str, ...] = (
    "title",
    "author",
    "description",
    "genres",
    "series",
    "volume",
    "isbn",
    "publisher",
    "language",
    "publication_date",
)


def dedupe_genres(genres: list[str]) -> list[str]:
    """Strip, drop empties and case-insensitive duplicates, keep order."""
    seen: set[str] = set()
    result: list[str] = []
    for genre in genres:
        name = genre.strip()
        key = name.casefold()
        if name and key not in seen:
            seen.add(key)
            result.append(name)
    return result


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == []


def build_updates(
    record: ContentRecord, candidate: MetadataCandidate, *, overwrite: bool = False
) -> dict[str, Any]:
    """Field updates that would change ``record``.

    Args:
        record: Current record state
        candidate: Selected search result
        overwrite: Manual-apply semantics (candidate values win)

    Returns:
        Mapping of field name to new value; unchanged fields are omitted.
        The author is always resolved, falling back to "Unknown".
    """
    updates: dict[str, Any] = {}
    for name in MAPPED_FIELDS:
        value = getattr(candidate, name)
        if name == "genres":
            value = dedupe_genres(value)
        if _is_empty(value):
            continue

        current = getattr(record, name)
        replace = overwrite or _is_empty(current)
        if name == "title" and not record.has_embedded_metadata:
            replace = True
        if name == "author" and current == UNKNOWN_AUTHOR:
            replace = True
        if replace and value != current:
            updates[name] = value

    if _is_empty(updates.get("author", record.author)):
        updates["author"] = UNKNOWN_AUTHOR
    return updates
