"""
Repository for catalog rate records.

Every mutation that must not lose concurrent updates is a single SQL
statement:

  - ``update_sourced()``     - one UPDATE per (institution, account type) key.
  - ``increment_counter()``  - ``x = x + 1`` in SQL, never read-modify-write.

Visibility (``report_count <= verification_count``) is a WHERE predicate
evaluated on every public query; it is never stored.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from typing import Any, Literal, Optional

from rate_catalog.db.repositories.base import BaseRepository
from rate_catalog.models.rate import (
    CandidateRecord,
    CounterSnapshot,
    Location,
    RateFilter,
    RateRecord,
)
from rate_catalog.utils.time_utils import from_iso, to_iso

logger = logging.getLogger(__name__)

VISIBLE_PREDICATE = "report_count <= verification_count"

AdminSort = Literal["apy", "newest", "oldest", "reports"]

_ADMIN_ORDER: dict[str, str] = {
    "apy": "apy DESC, rate DESC, record_id ASC",
    "newest": "created_at DESC, record_id DESC",
    "oldest": "created_at ASC, record_id ASC",
    "reports": "report_count DESC, created_at DESC, record_id DESC",
}

# Columns a moderator may patch directly, keyed by RateRecord field name.
PATCHABLE_COLUMNS: dict[str, str] = {
    "institution_name": "institution_name",
    "rate": "rate",
    "apy": "apy",
    "min_deposit": "min_deposit",
    "term": "term_months",
    "features": "features_json",
    "source_url": "source_url",
    "availability": "availability",
    "notes": "notes",
}

_COUNTER_COLUMNS = frozenset({"verification_count", "report_count"})


class RateRecordRepository(BaseRepository):
    """Read/write access to the ``rate_records`` table."""

    # ── Inserts and sourced updates ───────────────────────────────────────────

    def insert(
        self,
        candidate: CandidateRecord,
        *,
        verification_count: int,
        report_count: int,
        last_verified_at: Optional[datetime],
        last_scraped_at: Optional[datetime],
        now: datetime,
    ) -> int:
        """Insert a new record built from ``candidate`` and return its id.

        Args:
            candidate: Normalized record values.
            verification_count: Initial verification counter.
            report_count: Initial report counter.
            last_verified_at: Initial verification timestamp, or ``None``.
            last_scraped_at: Sourced refresh timestamp, or ``None``.
            now: Value for ``created_at`` / ``updated_at``.

        Returns:
            The newly assigned ``record_id``.
        """
        location = candidate.location or Location()
        self.execute(
            """
            INSERT INTO rate_records (
                institution_name, account_type, rate, apy, min_deposit,
                term_months, features_json, source_origin, source_url,
                availability, city, state, zip_code, region, notes,
                submitted_by, verification_count, report_count,
                last_verified_at, last_scraped_at, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                candidate.institution_name,
                candidate.account_type.value,
                candidate.rate,
                candidate.apy,
                candidate.min_deposit,
                candidate.term,
                _features_to_json(candidate.features),
                candidate.origin.value,
                candidate.source_url,
                candidate.availability.value,
                location.city,
                location.state,
                location.zip_code,
                location.region,
                candidate.notes,
                candidate.submitted_by,
                verification_count,
                report_count,
                to_iso(last_verified_at),
                to_iso(last_scraped_at),
                to_iso(now),
                to_iso(now),
            ),
        )
        return self.last_insert_rowid()

    def update_sourced(
        self,
        candidate: CandidateRecord,
        *,
        reset_trust: bool,
        now: datetime,
    ) -> bool:
        """Overwrite the sourced record for ``candidate``'s key in one UPDATE.

        Community records sharing the key are never touched. ``source_url``
        is kept when the incoming value is absent, and so are the existing
        features when the incoming set is empty.

        Args:
            candidate: Normalized scraped/api values.
            reset_trust: If ``True``, both counters are set to 0.
            now: Value for ``last_scraped_at`` / ``updated_at``.

        Returns:
            ``True`` if a record matched the key and was updated.
        """
        cursor = self.execute(
            """
            UPDATE rate_records SET
                rate               = ?,
                apy                = ?,
                min_deposit        = ?,
                term_months        = ?,
                features_json      = COALESCE(?, features_json),
                source_url         = COALESCE(?, source_url),
                source_origin      = ?,
                last_scraped_at    = ?,
                updated_at         = ?,
                verification_count = CASE WHEN ? THEN 0 ELSE verification_count END,
                report_count       = CASE WHEN ? THEN 0 ELSE report_count END
            WHERE institution_name = ?
              AND account_type = ?
              AND source_origin != 'community';
            """,
            (
                candidate.rate,
                candidate.apy,
                candidate.min_deposit,
                candidate.term,
                _features_to_json(candidate.features) if candidate.features else None,
                candidate.source_url,
                candidate.origin.value,
                to_iso(now),
                to_iso(now),
                int(reset_trust),
                int(reset_trust),
                candidate.institution_name,
                candidate.account_type.value,
            ),
        )
        return cursor.rowcount > 0

    # ── Counters ──────────────────────────────────────────────────────────────

    def increment_counter(
        self,
        record_id: int,
        column: str,
        now: datetime,
    ) -> bool:
        """Atomically add 1 to ``column`` on ``record_id``.

        Incrementing ``verification_count`` also stamps ``last_verified_at``.

        Args:
            record_id: Target record.
            column: ``"verification_count"`` or ``"report_count"``.
            now: Timestamp for ``updated_at`` (and ``last_verified_at``).

        Returns:
            ``True`` if the record exists.

        Raises:
            ValueError: If ``column`` is not a counter column.
        """
        if column not in _COUNTER_COLUMNS:
            raise ValueError(f"Not a counter column: '{column}'.")

        stamp = ", last_verified_at = :now" if column == "verification_count" else ""
        cursor = self.execute(
            f"""
            UPDATE rate_records
            SET {column} = {column} + 1, updated_at = :now{stamp}
            WHERE record_id = :record_id;
            """,
            {"now": to_iso(now), "record_id": record_id},
        )
        return cursor.rowcount > 0

    def reset_counters(self, record_id: int, now: datetime) -> bool:
        """Set both counters of ``record_id`` to 0. Returns ``False`` if missing."""
        cursor = self.execute(
            """
            UPDATE rate_records
            SET verification_count = 0, report_count = 0, updated_at = ?
            WHERE record_id = ?;
            """,
            (to_iso(now), record_id),
        )
        return cursor.rowcount > 0

    def get_counters(self, record_id: int) -> Optional[CounterSnapshot]:
        row = self.fetchone(
            """
            SELECT record_id, verification_count, report_count, last_verified_at
            FROM rate_records WHERE record_id = ?;
            """,
            (record_id,),
        )
        if row is None:
            return None
        return CounterSnapshot(
            record_id=row["record_id"],
            verification_count=row["verification_count"],
            report_count=row["report_count"],
            last_verified_at=from_iso(row["last_verified_at"]),
        )

    # ── Lookups ───────────────────────────────────────────────────────────────

    def get_by_id(self, record_id: int) -> Optional[RateRecord]:
        row = self.fetchone(
            "SELECT * FROM rate_records WHERE record_id = ?;", (record_id,)
        )
        return _row_to_record(row) if row else None

    def find_sourced(
        self, institution_name: str, account_type: str
    ) -> Optional[RateRecord]:
        """Return the scraped/api record for a key, ignoring community rows."""
        row = self.fetchone(
            """
            SELECT * FROM rate_records
            WHERE institution_name = ? AND account_type = ?
              AND source_origin != 'community';
            """,
            (institution_name, account_type),
        )
        return _row_to_record(row) if row else None

    def mean_sourced_apy(self, account_type: str) -> Optional[float]:
        """Mean APY over scraped/api records of ``account_type``.

        Records with no APY are excluded. Returns ``None`` when no such
        record exists. Always a live aggregate over the current table.
        """
        row = self.fetchone(
            """
            SELECT AVG(apy) AS mean_apy
            FROM rate_records
            WHERE account_type = ?
              AND source_origin IN ('api', 'scraped')
              AND apy IS NOT NULL;
            """,
            (account_type,),
        )
        if row is None or row["mean_apy"] is None:
            return None
        return float(row["mean_apy"])

    def list_sourced_institutions(self) -> list[str]:
        """Distinct institution names that have a scraped/api record."""
        rows = self.fetchall(
            """
            SELECT DISTINCT institution_name FROM rate_records
            WHERE source_origin != 'community'
            ORDER BY institution_name;
            """
        )
        return [r["institution_name"] for r in rows]

    # ── Public listings (visibility filter applied) ───────────────────────────

    def find_visible(self, rate_filter: RateFilter) -> list[RateRecord]:
        """Visible records matching ``rate_filter``, best yield first."""
        clauses = [VISIBLE_PREDICATE]
        params: list[Any] = []

        if rate_filter.account_type is not None:
            clauses.append("account_type = ?")
            params.append(rate_filter.account_type.value)
        if rate_filter.origin is not None:
            clauses.append("source_origin = ?")
            params.append(rate_filter.origin.value)
        if rate_filter.min_rate is not None:
            clauses.append("(apy >= ? OR rate >= ?)")
            params.extend([rate_filter.min_rate, rate_filter.min_rate])
        if rate_filter.max_min_deposit is not None:
            clauses.append("min_deposit <= ?")
            params.append(rate_filter.max_min_deposit)

        location_terms = ["availability = 'national'"]
        if rate_filter.zip_code:
            location_terms.append("zip_code = ?")
            params.append(rate_filter.zip_code)
        if rate_filter.state:
            location_terms.append("state = ?")
            params.append(rate_filter.state)
        if len(location_terms) > 1:
            clauses.append("(" + " OR ".join(location_terms) + ")")

        params.append(rate_filter.limit)
        rows = self.fetchall(
            f"""
            SELECT * FROM rate_records
            WHERE {" AND ".join(clauses)}
            ORDER BY apy DESC, rate DESC, record_id ASC
            LIMIT ?;
            """,
            tuple(params),
        )
        return [_row_to_record(r) for r in rows]

    def top_rates(self, account_type: str, limit: int = 5) -> list[RateRecord]:
        rows = self.fetchall(
            f"""
            SELECT * FROM rate_records
            WHERE account_type = ? AND {VISIBLE_PREDICATE}
            ORDER BY apy DESC, rate DESC, verification_count DESC, record_id ASC
            LIMIT ?;
            """,
            (account_type, limit),
        )
        return [_row_to_record(r) for r in rows]

    def ranking_candidates(
        self,
        account_type: str,
        min_rate: Optional[float] = None,
        limit: int = 20,
    ) -> list[RateRecord]:
        """Candidate set handed to the ranker, in query order.

        The order here is the tie-break order of the stable ranking sort.
        """
        clauses = ["account_type = ?", VISIBLE_PREDICATE]
        params: list[Any] = [account_type]
        if min_rate is not None:
            clauses.append("(apy >= ? OR rate >= ?)")
            params.extend([min_rate, min_rate])
        params.append(limit)

        rows = self.fetchall(
            f"""
            SELECT * FROM rate_records
            WHERE {" AND ".join(clauses)}
            ORDER BY apy DESC, rate DESC, verification_count DESC, record_id ASC
            LIMIT ?;
            """,
            tuple(params),
        )
        return [_row_to_record(r) for r in rows]

    def meeting_target(
        self, account_type: str, target_rate: float, limit: int = 10
    ) -> list[RateRecord]:
        """Visible records whose effective yield reaches ``target_rate``."""
        rows = self.fetchall(
            f"""
            SELECT * FROM rate_records
            WHERE account_type = ?
              AND COALESCE(apy, rate) >= ?
              AND {VISIBLE_PREDICATE}
            ORDER BY apy DESC, rate DESC, record_id ASC
            LIMIT ?;
            """,
            (account_type, target_rate, limit),
        )
        return [_row_to_record(r) for r in rows]

    # ── Admin (no visibility filter) ──────────────────────────────────────────

    def admin_list(
        self,
        origin: Optional[str] = None,
        account_type: Optional[str] = None,
        sort: AdminSort = "apy",
        limit: int = 500,
    ) -> list[RateRecord]:
        if sort not in _ADMIN_ORDER:
            raise ValueError(
                f"Unknown sort '{sort}'. Must be one of {sorted(_ADMIN_ORDER)}."
            )
        clauses: list[str] = []
        params: list[Any] = []
        if origin:
            clauses.append("source_origin = ?")
            params.append(origin)
        if account_type:
            clauses.append("account_type = ?")
            params.append(account_type)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)

        rows = self.fetchall(
            f"""
            SELECT * FROM rate_records
            {where}
            ORDER BY {_ADMIN_ORDER[sort]}
            LIMIT ?;
            """,
            tuple(params),
        )
        return [_row_to_record(r) for r in rows]

    def high_reports(self, threshold: int, limit: int = 500) -> list[RateRecord]:
        """Records with ``report_count >= threshold``, most reported first."""
        rows = self.fetchall(
            """
            SELECT * FROM rate_records
            WHERE report_count >= ?
            ORDER BY report_count DESC, record_id ASC
            LIMIT ?;
            """,
            (threshold, limit),
        )
        return [_row_to_record(r) for r in rows]

    def stats(self, high_reports_threshold: int) -> dict[str, int]:
        """Catalog totals for the moderation dashboard."""
        row = self.fetchone(
            """
            SELECT
                COUNT(*)                                                   AS total,
                COALESCE(SUM(CASE WHEN source_origin = 'community' THEN 1 END), 0) AS community,
                COALESCE(SUM(CASE WHEN source_origin = 'scraped' THEN 1 END), 0)   AS scraped,
                COALESCE(SUM(CASE WHEN source_origin = 'api' THEN 1 END), 0)       AS api,
                COALESCE(SUM(CASE WHEN report_count > 0 THEN 1 END), 0)            AS reported,
                COALESCE(SUM(CASE WHEN report_count >= ? THEN 1 END), 0)           AS high_reports,
                COALESCE(SUM(CASE WHEN report_count > verification_count THEN 1 END), 0) AS hidden
            FROM rate_records;
            """,
            (high_reports_threshold,),
        )
        assert row is not None
        return {key: int(row[key]) for key in row.keys()}

    def delete(self, record_id: int) -> bool:
        cursor = self.execute(
            "DELETE FROM rate_records WHERE record_id = ?;", (record_id,)
        )
        return cursor.rowcount > 0

    def delete_many(self, record_ids: list[int]) -> int:
        """Delete every listed record; returns the number actually removed."""
        if not record_ids:
            return 0
        placeholders = ", ".join("?" for _ in record_ids)
        cursor = self.execute(
            f"DELETE FROM rate_records WHERE record_id IN ({placeholders});",
            tuple(record_ids),
        )
        return cursor.rowcount

    def patch(self, record_id: int, changes: dict[str, Any], now: datetime) -> bool:
        """Apply already-validated field changes to one record.

        Args:
            record_id: Target record.
            changes: RateRecord field name → new value. Keys must be in
                ``PATCHABLE_COLUMNS``.
            now: Value for ``updated_at``.

        Returns:
            ``True`` if the record exists.
        """
        unknown = set(changes) - set(PATCHABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Fields not patchable: {sorted(unknown)}.")

        assignments = []
        params: list[Any] = []
        for field_name, value in changes.items():
            assignments.append(f"{PATCHABLE_COLUMNS[field_name]} = ?")
            if field_name == "features":
                value = _features_to_json(value)
            elif hasattr(value, "value"):
                value = value.value
            params.append(value)
        assignments.append("updated_at = ?")
        params.extend([to_iso(now), record_id])

        cursor = self.execute(
            f"UPDATE rate_records SET {', '.join(assignments)} WHERE record_id = ?;",
            tuple(params),
        )
        return cursor.rowcount > 0


# ── Private helpers ────────────────────────────────────────────────────────────

def _features_to_json(features) -> str:
    return json.dumps(sorted(features))


def _row_to_record(row: sqlite3.Row) -> RateRecord:
    location = Location(
        city=row["city"],
        state=row["state"],
        zip_code=row["zip_code"],
        region=row["region"],
    )
    return RateRecord(
        record_id=row["record_id"],
        institution_name=row["institution_name"],
        account_type=row["account_type"],
        rate=row["rate"],
        apy=row["apy"],
        min_deposit=row["min_deposit"],
        term=row["term_months"],
        features=frozenset(json.loads(row["features_json"] or "[]")),
        source_origin=row["source_origin"],
        source_url=row["source_url"],
        availability=row["availability"],
        location=None if location.is_empty else location,
        notes=row["notes"],
        submitted_by=row["submitted_by"],
        verification_count=row["verification_count"],
        report_count=row["report_count"],
        last_verified_at=from_iso(row["last_verified_at"]),
        last_scraped_at=from_iso(row["last_scraped_at"]),
        created_at=from_iso(row["created_at"]),
        updated_at=from_iso(row["updated_at"]),
    )
