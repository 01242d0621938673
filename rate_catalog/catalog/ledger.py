"""
Verification ledger: community verify/report counters and moderation.

Counters
--------
  verify(record_id)          verification_count += 1, last_verified_at = now
  report(record_id, reason)  report_count += 1 (reason is never stored)

Both are single ``x = x + 1`` statements, so concurrent callers never lose
an update. Retried requests count twice; there is no de-duplication.

Visibility
----------
A record is publicly visible while ``report_count <= verification_count``.
This is evaluated on every query, so a later ``verify`` un-suppresses a
record without any explicit unflag step.

Moderation
----------
The admin view bypasses visibility and adds a ``high_reports`` bucket
(``report_count >= threshold``, 3 by default) for triage ordering only.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from rate_catalog.db.repositories.rate_repo import (
    PATCHABLE_COLUMNS,
    AdminSort,
    RateRecordRepository,
)
from rate_catalog.errors import NotFoundError, ValidationError
from rate_catalog.models.rate import CounterSnapshot, RateRecord
from rate_catalog.taxonomy.rate_taxonomy import AccountType, AvailabilityScope
from rate_catalog.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdminView:
    """Unfiltered moderation listing."""

    records: list[RateRecord]
    high_reports: list[RateRecord]


class VerificationLedger:
    """Counter mutations and moderator actions over one open connection.

    Args:
        repo: Repository bound to the caller's connection.
        high_reports_threshold: ``report_count`` at which a record enters
            the admin ``high_reports`` bucket.
    """

    def __init__(self, repo: RateRecordRepository, high_reports_threshold: int = 3) -> None:
        self.repo = repo
        self.high_reports_threshold = high_reports_threshold

    def verify(self, record_id: int, now: Optional[datetime] = None) -> CounterSnapshot:
        """Record one community verification.

        Raises:
            NotFoundError: If ``record_id`` does not exist.
        """
        if not self.repo.increment_counter(record_id, "verification_count", now or utcnow()):
            raise NotFoundError("Rate record", record_id)
        snapshot = self._snapshot(record_id)
        logger.info(
            "Verified record %d | verifications=%d reports=%d",
            record_id, snapshot.verification_count, snapshot.report_count,
        )
        return snapshot

    def report(
        self,
        record_id: int,
        reason: str,
        now: Optional[datetime] = None,
    ) -> CounterSnapshot:
        """Record one community report.

        Raises:
            ValidationError: If ``reason`` is blank.
            NotFoundError: If ``record_id`` does not exist.
        """
        if not reason or not reason.strip():
            raise ValidationError("A report reason is required.", field="reason")
        if not self.repo.increment_counter(record_id, "report_count", now or utcnow()):
            raise NotFoundError("Rate record", record_id)
        snapshot = self._snapshot(record_id)
        logger.warning(
            "Reported record %d | reason=%r | verifications=%d reports=%d visible=%s",
            record_id, reason.strip(), snapshot.verification_count,
            snapshot.report_count, snapshot.is_visible,
        )
        return snapshot

    # ── Moderation ────────────────────────────────────────────────────────────

    def admin_view(
        self,
        origin: Optional[str] = None,
        account_type: Optional[str] = None,
        sort: AdminSort = "apy",
        limit: int = 500,
    ) -> AdminView:
        return AdminView(
            records=self.repo.admin_list(origin, account_type, sort, limit),
            high_reports=self.repo.high_reports(self.high_reports_threshold, limit),
        )

    def admin_stats(self) -> dict[str, int]:
        return self.repo.stats(self.high_reports_threshold)

    def delete(self, record_id: int) -> None:
        if not self.repo.delete(record_id):
            raise NotFoundError("Rate record", record_id)
        logger.info("Deleted record %d", record_id)

    def bulk_delete(self, record_ids: list[int]) -> int:
        """Delete every listed record; unknown ids are ignored."""
        if not record_ids:
            raise ValidationError("record_ids must not be empty.", field="record_ids")
        deleted = self.repo.delete_many(record_ids)
        logger.info("Bulk-deleted %d of %d record(s)", deleted, len(record_ids))
        return deleted

    def reset_counters(self, record_id: int, now: Optional[datetime] = None) -> CounterSnapshot:
        """Explicit moderator reset of both counters to 0."""
        if not self.repo.reset_counters(record_id, now or utcnow()):
            raise NotFoundError("Rate record", record_id)
        logger.info("Reset counters on record %d", record_id)
        return self._snapshot(record_id)

    def patch(
        self,
        record_id: int,
        changes: dict[str, Any],
        now: Optional[datetime] = None,
    ) -> RateRecord:
        """Apply moderator edits to a record after validating them.

        Counters cannot be patched; use ``reset_counters`` instead.

        Raises:
            ValidationError: On unknown fields or invalid values.
            NotFoundError: If ``record_id`` does not exist.
        """
        record = self.repo.get_by_id(record_id)
        if record is None:
            raise NotFoundError("Rate record", record_id)

        cleaned = _validate_patch(record.account_type, changes)
        self.repo.patch(record_id, cleaned, now or utcnow())
        logger.info("Patched record %d | fields=%s", record_id, sorted(cleaned))

        patched = self.repo.get_by_id(record_id)
        if patched is None:
            raise NotFoundError("Rate record", record_id)
        return patched

    def _snapshot(self, record_id: int) -> CounterSnapshot:
        snapshot = self.repo.get_counters(record_id)
        if snapshot is None:
            raise NotFoundError("Rate record", record_id)
        return snapshot


# ── Private helpers ────────────────────────────────────────────────────────────

def _validate_patch(account_type: AccountType, changes: dict[str, Any]) -> dict[str, Any]:
    if not changes:
        raise ValidationError("No fields to update.")
    unknown = set(changes) - set(PATCHABLE_COLUMNS)
    if unknown:
        raise ValidationError(f"Fields cannot be edited: {sorted(unknown)}.")

    cleaned: dict[str, Any] = {}
    for field_name, value in changes.items():
        if field_name in ("rate", "apy", "min_deposit"):
            if value is None and field_name == "apy":
                cleaned[field_name] = None
                continue
            try:
                number = float(value)
            except (TypeError, ValueError):
                raise ValidationError(f"{field_name} must be a number.", field=field_name) from None
            if not math.isfinite(number) or number < 0:
                raise ValidationError(
                    f"{field_name} must be a finite number >= 0.", field=field_name
                )
            cleaned[field_name] = number
        elif field_name == "term":
            if account_type is not AccountType.CD:
                raise ValidationError("term is only valid for cd accounts.", field="term")
            try:
                term = int(value)
            except (TypeError, ValueError):
                raise ValidationError("term must be a whole number of months.", field="term") from None
            if term < 1:
                raise ValidationError("term must be >= 1 month.", field="term")
            cleaned[field_name] = term
        elif field_name == "features":
            cleaned[field_name] = frozenset(str(f).strip() for f in value or () if str(f).strip())
        elif field_name == "availability":
            try:
                cleaned[field_name] = AvailabilityScope(str(value).lower())
            except ValueError:
                raise ValidationError(
                    f"Unknown availability '{value}'.", field="availability"
                ) from None
        elif field_name == "institution_name":
            if not value or not str(value).strip():
                raise ValidationError("institution_name must not be blank.", field=field_name)
            cleaned[field_name] = str(value).strip()
        else:
            cleaned[field_name] = value
    return cleaned
