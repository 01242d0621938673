"""
Trust scorer for community submissions.

Two independent checks; either one flags the submission:

  1. Absolute ceiling - ``apy > apy_ceiling`` (15% by default).
  2. Relative outlier - ``apy > outlier_multiple × mean`` where ``mean`` is
     the live average APY of scraped/api records of the same account type.
     Skipped when no such record exists.

Outcome
-------
  unflagged: verification_count = 1, report_count = 0, last_verified_at = now
             (the submitter's own claim counts as one verification)
  flagged:   verification_count = 0, report_count = 1, last_verified_at unset
             and the reasons are prepended to the notes. The record starts
             hidden from public listings until verified by others.

The reference mean is always read from the store at decision time by
``reference_mean_for()``; nothing here caches it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from rate_catalog.db.repositories.rate_repo import RateRecordRepository
from rate_catalog.models.rate import CandidateRecord
from rate_catalog.taxonomy.rate_taxonomy import AccountType

logger = logging.getLogger(__name__)

DEFAULT_APY_CEILING = 15.0
DEFAULT_OUTLIER_MULTIPLE = 2.0


@dataclass(frozen=True)
class TrustAssessment:
    """Initial trust state for a new community record."""

    flagged: bool
    reasons: tuple[str, ...]
    verification_count: int
    report_count: int
    last_verified_at: Optional[datetime]

    def annotate(self, notes: Optional[str]) -> Optional[str]:
        """Prepend ``[AUTO-FLAGGED: ...]`` to ``notes`` when flagged."""
        if not self.flagged:
            return notes
        tag = f"[AUTO-FLAGGED: {'; '.join(self.reasons)}]"
        return f"{tag} {notes}" if notes else tag


def reference_mean_for(
    repo: RateRecordRepository, account_type: AccountType
) -> Optional[float]:
    """Current mean APY of scraped/api records for ``account_type``."""
    return repo.mean_sourced_apy(account_type.value)


def assess_trust(
    candidate: CandidateRecord,
    reference_mean: Optional[float],
    now: datetime,
    apy_ceiling: float = DEFAULT_APY_CEILING,
    outlier_multiple: float = DEFAULT_OUTLIER_MULTIPLE,
) -> TrustAssessment:
    """Decide the initial counters for a community candidate.

    Args:
        candidate: Normalized community candidate.
        reference_mean: Sourced-record mean APY for the account type, or
            ``None`` when there are no sourced records.
        now: Timestamp used for ``last_verified_at`` when unflagged.
        apy_ceiling: Absolute APY ceiling (percent).
        outlier_multiple: Multiple of the mean above which APY is an outlier.

    Returns:
        ``TrustAssessment`` with counters and any flag reasons.
    """
    reasons: list[str] = []

    if candidate.apy > apy_ceiling:
        reasons.append(f"exceeds {apy_ceiling:g}% APY")

    # A zero mean cannot anchor a ratio; treat it like "no reference".
    if reference_mean is not None and reference_mean > 0:
        if candidate.apy > outlier_multiple * reference_mean:
            reasons.append(f"{candidate.apy / reference_mean:.1f}x higher than average")

    if reasons:
        logger.warning(
            "Auto-flagged community rate | institution=%s type=%s apy=%.2f | %s",
            candidate.institution_name, candidate.account_type, candidate.apy,
            "; ".join(reasons),
        )
        return TrustAssessment(
            flagged=True,
            reasons=tuple(reasons),
            verification_count=0,
            report_count=1,
            last_verified_at=None,
        )

    return TrustAssessment(
        flagged=False,
        reasons=(),
        verification_count=1,
        report_count=0,
        last_verified_at=now,
    )
