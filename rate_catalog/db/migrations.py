"""
Incremental schema changes for existing catalog databases.

``apply_schema()`` always creates the current tables on a fresh store; the
steps here bring an older ``rate_catalog.db`` up to date without dropping
any rate records or alerts. Applied steps are recorded in
``schema_versions`` and never re-run. There are no down-migrations.

To add a step, write ``migration_NNNN_<what>(conn)`` and register it in
``MIGRATIONS`` under the next ``"NNNN_<what>"`` key. Steps run in key order.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable

from rate_catalog.errors import PersistenceError

logger = logging.getLogger(__name__)

MigrationFn = Callable[[sqlite3.Connection], None]


def _ensure_version_table(conn: sqlite3.Connection) -> None:
    conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_versions (
            version_id  TEXT    NOT NULL PRIMARY KEY,
            applied_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
            description TEXT
        );
    """)
    conn.commit()


def _applied_versions(conn: sqlite3.Connection) -> set[str]:
    return {row[0] for row in conn.execute("SELECT version_id FROM schema_versions;")}


# ── Migration steps ────────────────────────────────────────────────────────────

def migration_0001_baseline(conn: sqlite3.Connection) -> None:
    """Marks the catalog schema as first shipped; nothing to change."""


def migration_0002_report_count_index(conn: sqlite3.Connection) -> None:
    """Index report_count so the admin high-reports view avoids a table scan."""
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_rate_records_report_count "
        "ON rate_records(report_count DESC);"
    )


MIGRATIONS: dict[str, tuple[MigrationFn, str]] = {
    "0001_baseline": (
        migration_0001_baseline,
        "Catalog baseline",
    ),
    "0002_report_count_index": (
        migration_0002_report_count_index,
        "Add idx_rate_records_report_count for moderation queries",
    ),
}


def run_migrations(conn: sqlite3.Connection) -> int:
    """Apply every step in ``MIGRATIONS`` not yet recorded in ``schema_versions``.

    Each step commits together with its ``schema_versions`` row, so a failed
    step leaves earlier steps applied and itself unrecorded.

    Returns:
        Number of steps applied by this call.

    Raises:
        PersistenceError: If a step fails; the step is rolled back.
    """
    _ensure_version_table(conn)
    applied = _applied_versions(conn)

    pending = [key for key in sorted(MIGRATIONS) if key not in applied]
    for version_id in pending:
        fn, description = MIGRATIONS[version_id]
        logger.info("Applying migration %s: %s", version_id, description)
        try:
            fn(conn)
            conn.execute(
                "INSERT INTO schema_versions(version_id, description) VALUES (?, ?);",
                (version_id, description),
            )
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            logger.error("Migration %s failed: %s", version_id, exc)
            raise PersistenceError(f"Migration {version_id} failed: {exc}") from exc

    if pending:
        logger.info("Applied %d migration(s).", len(pending))
    else:
        logger.debug("Catalog schema is up to date.")
    return len(pending)
