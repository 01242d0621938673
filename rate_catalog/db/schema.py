"""
SQLite schema DDL - all CREATE TABLE and CREATE INDEX statements.

All statements use ``IF NOT EXISTS`` so ``apply_schema()`` is **idempotent**.

Tables:
  1. rate_records   (no FKs)
  2. rate_alerts    (no FKs)
  3. run_metadata   (no FKs)

``rate_records`` carries a partial unique index on
``(institution_name, account_type)`` for non-community rows: there is at
most one scraped/api record per institution and account type, while
community submissions are free to repeat the pair.
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

# ── DDL statements ─────────────────────────────────────────────────────────────

_DDL_RATE_RECORDS = """
CREATE TABLE IF NOT EXISTS rate_records (
    record_id           INTEGER PRIMARY KEY AUTOINCREMENT,
    institution_name    TEXT    NOT NULL,
    account_type        TEXT    NOT NULL
                        CHECK (account_type IN ('checking', 'savings', 'cd', 'money-market')),
    rate                REAL    NOT NULL CHECK (rate >= 0),
    apy                 REAL    CHECK (apy IS NULL OR apy >= 0),
    min_deposit         REAL    NOT NULL DEFAULT 0 CHECK (min_deposit >= 0),
    term_months         INTEGER,
    features_json       TEXT    NOT NULL DEFAULT '[]',
    source_origin       TEXT    NOT NULL
                        CHECK (source_origin IN ('community', 'scraped', 'api')),
    source_url          TEXT,
    availability        TEXT    NOT NULL DEFAULT 'national'
                        CHECK (availability IN ('national', 'regional', 'local')),
    city                TEXT,
    state               TEXT,
    zip_code            TEXT,
    region              TEXT,
    notes               TEXT,
    submitted_by        TEXT,
    verification_count  INTEGER NOT NULL DEFAULT 0 CHECK (verification_count >= 0),
    report_count        INTEGER NOT NULL DEFAULT 0 CHECK (report_count >= 0),
    last_verified_at    TEXT,
    last_scraped_at     TEXT,
    created_at          TEXT    NOT NULL,
    updated_at          TEXT    NOT NULL
);
"""

_DDL_RATE_RECORDS_INDEXES = """
CREATE UNIQUE INDEX IF NOT EXISTS uq_rate_records_sourced_key
    ON rate_records(institution_name, account_type)
    WHERE source_origin != 'community';
CREATE INDEX IF NOT EXISTS idx_rate_records_type_apy
    ON rate_records(account_type, apy DESC);
CREATE INDEX IF NOT EXISTS idx_rate_records_origin
    ON rate_records(source_origin);
"""

_DDL_RATE_ALERTS = """
CREATE TABLE IF NOT EXISTS rate_alerts (
    alert_id          INTEGER PRIMARY KEY AUTOINCREMENT,
    email             TEXT    NOT NULL,
    account_type      TEXT    NOT NULL
                      CHECK (account_type IN ('checking', 'savings', 'cd', 'money-market')),
    target_rate       REAL    NOT NULL CHECK (target_rate >= 0 AND target_rate <= 20),
    frequency         TEXT    NOT NULL DEFAULT 'daily'
                      CHECK (frequency IN ('instant', 'daily', 'weekly')),
    active            INTEGER NOT NULL DEFAULT 1,
    last_notified_at  TEXT,
    created_at        TEXT    NOT NULL
);
"""

_DDL_RATE_ALERTS_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_rate_alerts_active
    ON rate_alerts(active, account_type);
CREATE INDEX IF NOT EXISTS idx_rate_alerts_email
    ON rate_alerts(email);
"""

_DDL_RUN_METADATA = """
CREATE TABLE IF NOT EXISTS run_metadata (
    run_id          INTEGER PRIMARY KEY AUTOINCREMENT,
    run_slug        TEXT    NOT NULL UNIQUE,
    pipeline_stage  TEXT    NOT NULL,
    status          TEXT    NOT NULL DEFAULT 'started',
    config_snapshot TEXT    NOT NULL,
    rows_processed  INTEGER NOT NULL DEFAULT 0,
    error_message   TEXT,
    started_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    finished_at     TEXT
);
"""

_ALL_DDL = [
    _DDL_RATE_RECORDS,
    _DDL_RATE_RECORDS_INDEXES,
    _DDL_RATE_ALERTS,
    _DDL_RATE_ALERTS_INDEXES,
    _DDL_RUN_METADATA,
]

# Table names for introspection / tests
ALL_TABLE_NAMES = [
    "rate_records",
    "rate_alerts",
    "run_metadata",
]


def apply_schema(conn: sqlite3.Connection) -> None:
    """Apply all DDL statements to ``conn``.

    Idempotent: safe to call on an already-initialized database.

    Args:
        conn: An open ``sqlite3.Connection`` (FK enforcement should be ON).
    """
    logger.debug("Applying schema to database...")

    for ddl in _ALL_DDL:
        for statement in _split_ddl(ddl):
            if statement.strip():
                conn.execute(statement)

    conn.commit()
    logger.info("Schema applied: %d tables, indexes created/verified.", len(ALL_TABLE_NAMES))


def _split_ddl(ddl: str) -> list[str]:
    """Split a multi-statement DDL block on semicolons."""
    return [s.strip() for s in ddl.split(";") if s.strip()]


def get_existing_tables(conn: sqlite3.Connection) -> list[str]:
    """Return table names present in the database, sorted alphabetically."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]


def get_existing_indexes(conn: sqlite3.Connection) -> list[str]:
    """Return index names present in the database, sorted alphabetically."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='index' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]
