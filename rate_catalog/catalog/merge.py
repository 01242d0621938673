"""
Catalog merge engine.

How an observation lands in the catalog is decided by a ``MergeStrategy``,
picked from the observation's origin by ``strategy_for()``:

  AlwaysNewRecord          community: every submission is its own record,
                           initial counters come from the trust scorer.
  UpsertByKey(policy)      scraped/api: one record per
                           (institution_name, account_type).

UpsertByKey
-----------
  found      → overwrite rate, apy, min_deposit, term, features and
               source_url (kept when the incoming URL is absent); stamp
               last_scraped_at; adopt the incoming origin.
               ``preserve-trust`` keeps both counters, ``reset-trust``
               zeroes them. One UPDATE statement per key.
  not found, apy > 0  → insert with counters 0/0, last_verified_at = now.
  not found, apy <= 0 → nothing written; ``MergeOutcome.NO_DATA``.

Community rows never match an UpsertByKey lookup, so a community
submission for "Ally Bank / savings" is never overwritten by a scrape.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Optional, Union

from rate_catalog.catalog.trust import assess_trust, reference_mean_for
from rate_catalog.config import TrustConfig
from rate_catalog.db.repositories.rate_repo import RateRecordRepository
from rate_catalog.models.rate import CandidateRecord, RateRecord
from rate_catalog.taxonomy.rate_taxonomy import RefreshPolicy, SourceOrigin
from rate_catalog.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AlwaysNewRecord:
    """Insert every observation as an independent record."""


@dataclass(frozen=True)
class UpsertByKey:
    """Converge to one record per (institution_name, account_type)."""

    refresh_policy: RefreshPolicy = RefreshPolicy.PRESERVE_TRUST


MergeStrategy = Union[AlwaysNewRecord, UpsertByKey]


class MergeOutcome(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    NO_DATA = "no_data"
    """Sourced observation with no usable yield and no existing record."""


@dataclass(frozen=True)
class MergeResult:
    outcome: MergeOutcome
    record: Optional[RateRecord]


def strategy_for(
    origin: SourceOrigin,
    refresh_policy: RefreshPolicy = RefreshPolicy.PRESERVE_TRUST,
) -> MergeStrategy:
    """Return the merge strategy for an origin.

    ``refresh_policy`` only applies to authoritative origins.
    """
    if origin.is_authoritative:
        return UpsertByKey(refresh_policy=refresh_policy)
    return AlwaysNewRecord()


class MergeEngine:
    """Applies a ``MergeStrategy`` to a candidate against the record store.

    Args:
        repo: Repository bound to the caller's open connection.
        trust_config: Thresholds for the community trust scorer.
    """

    def __init__(
        self,
        repo: RateRecordRepository,
        trust_config: Optional[TrustConfig] = None,
    ) -> None:
        self.repo = repo
        self.trust_config = trust_config or TrustConfig()

    def merge(
        self,
        candidate: CandidateRecord,
        strategy: MergeStrategy,
        now: Optional[datetime] = None,
    ) -> MergeResult:
        """Write ``candidate`` according to ``strategy``.

        Raises:
            ValueError: If the strategy does not fit the candidate's origin.
        """
        now = now or utcnow()

        if isinstance(strategy, AlwaysNewRecord):
            if candidate.origin.is_authoritative:
                raise ValueError(
                    f"AlwaysNewRecord applies to community candidates, got '{candidate.origin}'."
                )
            return self._insert_community(candidate, now)

        if isinstance(strategy, UpsertByKey):
            if not candidate.origin.is_authoritative:
                raise ValueError("UpsertByKey does not apply to community candidates.")
            return self._upsert_sourced(candidate, strategy.refresh_policy, now)

        raise TypeError(f"Unknown merge strategy: {strategy!r}")

    # ── Private helpers ───────────────────────────────────────────────────────

    def _insert_community(self, candidate: CandidateRecord, now: datetime) -> MergeResult:
        assessment = assess_trust(
            candidate,
            reference_mean_for(self.repo, candidate.account_type),
            now,
            apy_ceiling=self.trust_config.apy_ceiling,
            outlier_multiple=self.trust_config.outlier_multiple,
        )
        annotated = candidate.model_copy(
            update={"notes": assessment.annotate(candidate.notes)}
        )
        record_id = self.repo.insert(
            annotated,
            verification_count=assessment.verification_count,
            report_count=assessment.report_count,
            last_verified_at=assessment.last_verified_at,
            last_scraped_at=None,
            now=now,
        )
        logger.info(
            "Community rate created | id=%d institution=%s type=%s flagged=%s",
            record_id, candidate.institution_name, candidate.account_type,
            assessment.flagged,
        )
        return MergeResult(MergeOutcome.CREATED, self.repo.get_by_id(record_id))

    def _upsert_sourced(
        self,
        candidate: CandidateRecord,
        policy: RefreshPolicy,
        now: datetime,
    ) -> MergeResult:
        # The UPDATE takes SQLite's write lock; the insert below runs under it.
        updated = self.repo.update_sourced(
            candidate,
            reset_trust=policy is RefreshPolicy.RESET_TRUST,
            now=now,
        )
        if updated:
            logger.debug(
                "Sourced rate updated | institution=%s type=%s policy=%s",
                candidate.institution_name, candidate.account_type, policy,
            )
            record = self.repo.find_sourced(
                candidate.institution_name, candidate.account_type.value
            )
            return MergeResult(MergeOutcome.UPDATED, record)

        if candidate.apy <= 0:
            logger.info(
                "No rate data for %s %s; nothing created.",
                candidate.institution_name, candidate.account_type,
            )
            return MergeResult(MergeOutcome.NO_DATA, None)

        record_id = self.repo.insert(
            candidate,
            verification_count=0,
            report_count=0,
            last_verified_at=now,
            last_scraped_at=now,
            now=now,
        )
        logger.info(
            "Sourced rate created | id=%d institution=%s type=%s origin=%s",
            record_id, candidate.institution_name, candidate.account_type,
            candidate.origin,
        )
        return MergeResult(MergeOutcome.CREATED, self.repo.get_by_id(record_id))
