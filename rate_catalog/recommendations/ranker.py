"""
Recommendation ranker: scores a candidate set and keeps the top N.

Usage flow
----------
1. rank_candidates(records, preferences, now, top_n=5)
   -> list[Recommendation]  (rule-based, stable)

2. rank_with_fallback(records, preferences, ai_ranker, now, top_n=5)
   -> list[Recommendation]  (AI ranker first, rule-based on failure)

Ordering
--------
Records are sorted by score descending. The sort is stable: records with
equal scores keep the order the candidate query returned them in
(apy, rate, verification count, all descending).
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Protocol

from rate_catalog.errors import UpstreamUnavailable
from rate_catalog.models.rate import RateRecord
from rate_catalog.models.recommendation import Preferences, Recommendation
from rate_catalog.recommendations.scorer import build_reasoning, compute_match_score

logger = logging.getLogger(__name__)

DEFAULT_TOP_N = 5


class Ranker(Protocol):
    """An external ranking collaborator (e.g. an LLM-backed client)."""

    def rank(
        self,
        records: list[RateRecord],
        preferences: Preferences,
        top_n: int,
    ) -> list[Recommendation]:
        ...


def rank_candidates(
    records: list[RateRecord],
    preferences: Preferences,
    now: datetime,
    top_n: int = DEFAULT_TOP_N,
) -> list[Recommendation]:
    """Score every record and return the best ``top_n``.

    Args:
        records:     Candidates, already filtered to the account type, in
                     query order.
        preferences: The user's preferences.
        now:         Reference time for freshness scoring.
        top_n:       Maximum recommendations returned.

    Returns:
        Up to ``top_n`` recommendations, best first.
    """
    scored = [
        Recommendation(
            record=record,
            score=round(compute_match_score(record, preferences, now).total, 2),
            reasoning=build_reasoning(record, preferences),
            ranked_by="rules",
        )
        for record in records
    ]
    # sorted() is stable, so equal scores keep query order
    scored = sorted(scored, key=lambda rec: rec.score, reverse=True)
    return scored[:top_n]


def rank_with_fallback(
    records: list[RateRecord],
    preferences: Preferences,
    ai_ranker: Optional[Ranker],
    now: datetime,
    top_n: int = DEFAULT_TOP_N,
) -> list[Recommendation]:
    """Rank with ``ai_ranker`` when available; fall back to the rules.

    ``UpstreamUnavailable`` from the AI ranker is logged and never reaches
    the caller. An empty candidate set skips the AI call entirely.
    """
    if ai_ranker is not None and records:
        try:
            ranked = ai_ranker.rank(records, preferences, top_n)
            logger.info("AI ranker returned %d recommendation(s)", len(ranked))
            return ranked[:top_n]
        except UpstreamUnavailable as exc:
            logger.warning("AI ranker unavailable, using rule-based ranking: %s", exc)

    return rank_candidates(records, preferences, now, top_n)
