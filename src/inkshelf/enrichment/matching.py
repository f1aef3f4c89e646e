"""Best-match selection over source search results.

Scores are 0-100. Title similarity is weighted 60 and author similarity 40
when both sides know an author; otherwise the title score alone counts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from inkshelf.models import MetadataCandidate

from ..utils.fuzzy import clean_title, similarity_ratio, title_similarity

logger = logging.getLogger(__name__)

TITLE_WEIGHT = 0.6
AUTHOR_WEIGHT = 0.4
MATCH_THRESHOLD = 50.0


@dataclass(frozen=True)
class ScoredCandidate:
    candidate: MetadataCandidate
    score: float


def _first_author(author: str | None) -> str:
    if not author:
        return ""
    return author.split(",")[0].strip()


def score_candidate(
    candidate: MetadataCandidate, title: str, author: str | None = None
) -> float:
    """Weighted similarity of a candidate to a record's title/author."""
    wanted = clean_title(title) or title
    titles = [candidate.title, *candidate.alternative_titles]
    title_score = max(title_similarity(wanted, clean_title(t) or t) for t in titles)

    if author and candidate.author:
        author_score = max(
            similarity_ratio(author, candidate.author),
            similarity_ratio(_first_author(author), _first_author(candidate.author)),
        )
        return TITLE_WEIGHT * title_score + AUTHOR_WEIGHT * author_score
    return title_score


def rank_candidates(
    candidates: list[MetadataCandidate], title: str, author: str | None = None
) -> list[ScoredCandidate]:
    """All candidates with scores, best first. Ties keep source order."""
    scored = [ScoredCandidate(c, score_candidate(c, title, author)) for c in candidates]
    return sorted(scored, key=lambda s: s.score, reverse=True)


def select_best_match(
    candidates: list[MetadataCandidate],
    title: str,
    author: str | None = None,
    *,
    threshold: float = MATCH_THRESHOLD,
) -> MetadataCandidate | None:
    """Highest-scoring candidate at or above ``threshold``, else None."""
    if not candidates:
        return None
    best = rank_candidates(candidates, title, author)[0]
    logger.debug(
        "Best match for %r: %r from %s (score %.1f)",
        title,
        best.candidate.title,
        best.candidate.source,
        best.score,
    )
    if best.score < threshold:
        return None
    return best.candidate
