"""Text helpers shared by the comic sources."""

from __future__ import annotations

import html
import re
from collections.abc import Callable, Iterable, Sequence
from typing import TypeVar

T = TypeVar("T")

# Author credit precedence for sequential art
AUTHOR_ROLE_PRIORITY: tuple[str, ...] = ("Story & Art", "Story", "Original Creator", "Art")


def strip_html(text: str) -> str:
    """Convert ``<br>`` to newlines, drop remaining tags, unescape entities."""
    text = re.sub(r"<br\s*/?>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", "", text)
    return html.unescape(text).replace("\xa0", " ").strip()


def pick_by_role(
    items: Sequence[T],
    role_of: Callable[[T], str],
    priority: Iterable[str] = AUTHOR_ROLE_PRIORITY,
) -> T | None:
    """First item whose role matches the highest-priority role, else the first item."""
    if not items:
        return None
    for target in priority:
        for item in items:
            if role_of(item).lower() == target.lower():
                return item
    return items[0]


def format_fuzzy_date(year: int | None, month: int | None = None, day: int | None = None) -> str | None:
    """``YYYY``, ``YYYY-MM`` or ``YYYY-MM-DD`` depending on precision."""
    if not year:
        return None
    if not month:
        return f"{year}"
    if not day:
        return f"{year}-{month:02d}"
    return f"{year}-{month:02d}-{day:02d}"
