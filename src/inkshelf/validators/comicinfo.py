"""ComicInfo.xml parsing (the ComicRack sidecar format used in CBZ/CBR)."""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET

from .base import EmbeddedMetadata

logger = logging.getLogger(__name__)


def _text(root: ET.Element, tag: str) -> str | None:
    elem = root.find(tag)
    if elem is None or elem.text is None:
        return None
    return elem.text.strip() or None


def _int_prefix(value: str | None) -> int | None:
    """Leading integer of "3", "03", "3.5" or "3 (of 10)"; None otherwise."""
    if not value:
        return None
    digits = ""
    for char in value.strip():
        if not char.isdigit():
            break
        digits += char
    return int(digits) if digits else None


def _publication_date(year: str | None, month: str | None, day: str | None) -> str | None:
    if not year:
        return None
    month_part = month.zfill(2) if month else "01"
    day_part = day.zfill(2) if day else "01"
    return f"{year}-{month_part}-{day_part}"


def parse_comic_info(content: bytes | str) -> EmbeddedMetadata | None:
    """Parse ComicInfo.xml content.

    Args:
        content: Raw XML bytes or text

    Returns:
        EmbeddedMetadata, or None if the XML is malformed
    """
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        logger.warning("Malformed ComicInfo.xml: %s", e)
        return None

    genre_text = _text(root, "Genre")
    return EmbeddedMetadata(
        title=_text(root, "Title"),
        author=_text(root, "Writer"),
        description=_text(root, "Summary"),
        publisher=_text(root, "Publisher"),
        language=_text(root, "LanguageISO"),
        genres=[g.strip() for g in genre_text.split(",") if g.strip()] if genre_text else [],
        publication_date=_publication_date(
            _text(root, "Year"), _text(root, "Month"), _text(root, "Day")
        ),
        series=_text(root, "Series"),
        volume=_int_prefix(_text(root, "Volume") or _text(root, "Number")),
    )
