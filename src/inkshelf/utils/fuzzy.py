"""Fuzzy string matching utilities using RapidFuzz.

Provides fuzzy matching for:
- Candidate title scoring (search results vs. record title)
- Author name matching ("Kawahara, Reki" vs "Reki Kawahara")
"""

from __future__ import annotations

import re

from rapidfuzz import fuzz

_VOLUME_RE = re.compile(r"\bv(?:ol(?:ume)?)?\.?\s*\d+", re.IGNORECASE)
_TOME_RE = re.compile(r"\b(?:tome|t)\s*\d+", re.IGNORECASE)
_BRACKETED_RE = re.compile(r"\[.*?\]|\(.*?\)")


def similarity_ratio(a: str, b: str) -> float:
    """
    Get similarity ratio between two strings (0-100).

    Uses token_sort_ratio which handles word reordering well:
    - "Reki Kawahara" vs "Kawahara, Reki" -> high similarity
    - "Sword Art Online" vs "SAO" -> low similarity

    Args:
        a: First string
        b: Second string

    Returns:
        Similarity score from 0 (completely different) to 100 (identical)
    """
    if not a or not b:
        return 0.0
    return fuzz.token_sort_ratio(a.lower(), b.lower())


def title_similarity(a: str, b: str) -> float:
    """
    Title similarity (0-100) tolerant of subtitles and volume suffixes.

    Takes the better of token_sort_ratio and token_set_ratio so that
    "Overlord" vs "Overlord, Vol. 14" still scores high.
    """
    if not a or not b:
        return 0.0
    a, b = a.lower(), b.lower()
    return max(fuzz.token_sort_ratio(a, b), fuzz.token_set_ratio(a, b))


def clean_title(title: str) -> str:
    """
    Strip volume markers and bracketed tags from a title before searching.

    Example:
        >>> clean_title("Berserk Vol. 3 [Digital] (2003)")
        'Berserk'
    """
    cleaned = _VOLUME_RE.sub("", title)
    cleaned = _TOME_RE.sub("", cleaned)
    cleaned = _BRACKETED_RE.sub("", cleaned)
    return re.sub(r"\s+", " ", cleaned).strip()
