"""
Opening the catalog's SQLite store.

Every catalog operation is one unit of work: ``get_connection()`` opens the
file, applies the per-connection PRAGMAs, yields, then commits (or rolls back
if the body raised) and closes.

Connection settings:
  - ``foreign_keys = ON``.
  - WAL journal so listings and rankings read while a refresh sweep writes.
  - A busy timeout so concurrent verify/report increments wait, not fail.
  - ``sqlite3.Row`` rows.

Store failures outside a repository call (unopenable file, PRAGMA on a locked
database, failed commit) are raised as ``PersistenceError`` so batch stages
and the CLI handle them like any other ``CatalogError``. Errors raised by the
``with`` body itself propagate unchanged after the rollback.

Usage::

    from rate_catalog.db.connection import get_connection

    with get_connection("data/db/rate_catalog.db") as conn:
        RateRecordRepository(conn).increment_counter(record_id, "verification_count", now)
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from rate_catalog.errors import PersistenceError

logger = logging.getLogger(__name__)


def _open(db_path: str, wal_mode: bool, busy_timeout_ms: int) -> sqlite3.Connection:
    if db_path != ":memory:":
        try:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Cannot create directory for {db_path!r}: {exc}") from exc

    try:
        conn = sqlite3.connect(db_path, timeout=busy_timeout_ms / 1000)
    except sqlite3.Error as exc:
        raise PersistenceError(f"Cannot open catalog store {db_path!r}: {exc}") from exc
    conn.row_factory = sqlite3.Row

    try:
        conn.execute("PRAGMA foreign_keys = ON;")
        conn.execute(f"PRAGMA busy_timeout = {busy_timeout_ms};")
        if wal_mode and db_path != ":memory:":
            conn.execute("PRAGMA journal_mode = WAL;")
    except sqlite3.Error as exc:
        conn.close()
        raise PersistenceError(f"Cannot configure catalog store {db_path!r}: {exc}") from exc
    return conn


@contextmanager
def get_connection(
    db_path: str,
    wal_mode: bool = True,
    busy_timeout_ms: int = 5000,
) -> Generator[sqlite3.Connection, None, None]:
    """Yield a configured connection; commit on clean exit, roll back otherwise.

    Args:
        db_path: SQLite file (parent directories are created) or ``":memory:"``.
        wal_mode: Enable WAL journaling for file databases.
        busy_timeout_ms: How long a writer waits on a locked database.

    Raises:
        PersistenceError: If the store cannot be opened or configured, or
            the commit fails.
    """
    conn = _open(db_path, wal_mode, busy_timeout_ms)
    try:
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise

        try:
            conn.commit()
        except sqlite3.Error as exc:
            logger.error("Commit failed on %s: %s", db_path, exc)
            conn.rollback()
            raise PersistenceError(f"Commit failed on {db_path!r}: {exc}") from exc
    finally:
        conn.close()
