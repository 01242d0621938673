"""
Repository for subscriber rate alerts.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Optional

from rate_catalog.db.repositories.base import BaseRepository
from rate_catalog.models.alert import RateAlert
from rate_catalog.utils.time_utils import from_iso, to_iso

logger = logging.getLogger(__name__)


class RateAlertRepository(BaseRepository):
    """Read/write access to the ``rate_alerts`` table."""

    def insert(self, alert: RateAlert, now: datetime) -> int:
        """Insert a new active alert and return its ``alert_id``."""
        self.execute(
            """
            INSERT INTO rate_alerts (
                email, account_type, target_rate, frequency,
                active, last_notified_at, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?);
            """,
            (
                alert.email,
                alert.account_type.value,
                alert.target_rate,
                alert.frequency.value,
                int(alert.active),
                to_iso(alert.last_notified_at),
                to_iso(now),
            ),
        )
        return self.last_insert_rowid()

    def find_active(self, email: str, account_type: str) -> Optional[RateAlert]:
        """Return the active alert for ``(email, account_type)``, if any."""
        row = self.fetchone(
            """
            SELECT * FROM rate_alerts
            WHERE email = ? AND account_type = ? AND active = 1
            ORDER BY alert_id DESC LIMIT 1;
            """,
            (email, account_type),
        )
        return _row_to_alert(row) if row else None

    def update_target(self, alert_id: int, target_rate: float, frequency: str) -> None:
        self.execute(
            "UPDATE rate_alerts SET target_rate = ?, frequency = ? WHERE alert_id = ?;",
            (target_rate, frequency, alert_id),
        )

    def get_by_id(self, alert_id: int) -> Optional[RateAlert]:
        row = self.fetchone(
            "SELECT * FROM rate_alerts WHERE alert_id = ?;", (alert_id,)
        )
        return _row_to_alert(row) if row else None

    def get_for_email(self, email: str) -> list[RateAlert]:
        """Active alerts for ``email``, newest first."""
        rows = self.fetchall(
            """
            SELECT * FROM rate_alerts
            WHERE email = ? AND active = 1
            ORDER BY created_at DESC, alert_id DESC;
            """,
            (email,),
        )
        return [_row_to_alert(r) for r in rows]

    def get_all_active(self) -> list[RateAlert]:
        rows = self.fetchall(
            "SELECT * FROM rate_alerts WHERE active = 1 ORDER BY alert_id;"
        )
        return [_row_to_alert(r) for r in rows]

    def deactivate(self, alert_id: int) -> bool:
        """Mark an alert inactive. Returns ``False`` if no such alert exists."""
        cursor = self.execute(
            "UPDATE rate_alerts SET active = 0 WHERE alert_id = ?;", (alert_id,)
        )
        return cursor.rowcount > 0

    def mark_notified(self, alert_id: int, notified_at: datetime) -> None:
        self.execute(
            "UPDATE rate_alerts SET last_notified_at = ? WHERE alert_id = ?;",
            (to_iso(notified_at), alert_id),
        )


# ── Private helpers ────────────────────────────────────────────────────────────

def _row_to_alert(row: sqlite3.Row) -> RateAlert:
    return RateAlert(
        alert_id=row["alert_id"],
        email=row["email"],
        account_type=row["account_type"],
        target_rate=row["target_rate"],
        frequency=row["frequency"],
        active=bool(row["active"]),
        last_notified_at=from_iso(row["last_notified_at"]),
        created_at=from_iso(row["created_at"]),
    )
