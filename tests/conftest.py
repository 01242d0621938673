"""
Shared pytest fixtures for the Rate Catalog test suite.

Provides:
  - ``in_memory_db``: A fresh in-memory SQLite connection with the full
    schema applied. Created anew for each test that requests it.
  - ``db_path`` / ``app_config``: A schema-initialized SQLite file under
    ``tmp_path`` plus an ``AppConfig`` pointing at it (no inter-item delay).
  - ``notifier`` / ``service``: A mock notifier and a ``CatalogService``
    wired to both.
  - Sample domain object factories for use in multiple test modules.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Callable, Generator
from unittest.mock import MagicMock

import pytest

from rate_catalog.catalog.service import CatalogService
from rate_catalog.config import AppConfig, DatabaseConfig, RefreshConfig
from rate_catalog.db.connection import get_connection
from rate_catalog.db.schema import apply_schema
from rate_catalog.models.rate import Observation, RateRecord
from rate_catalog.models.recommendation import Preferences

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


# ── Database fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
def in_memory_db() -> Generator[sqlite3.Connection, None, None]:
    """Yield a fresh in-memory SQLite connection with the full schema applied.

    Foreign key enforcement is ON. Schema is applied idempotently.
    Connection is closed after the test.
    """
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    apply_schema(conn)
    yield conn
    conn.close()


@pytest.fixture
def db_path(tmp_path) -> str:
    """Path to a schema-initialized SQLite file, unique per test."""
    path = str(tmp_path / "catalog.db")
    with get_connection(path) as conn:
        apply_schema(conn)
    return path


@pytest.fixture
def app_config(db_path: str) -> AppConfig:
    """Default config pointed at ``db_path`` with no delay between sweep items."""
    return AppConfig(
        database=DatabaseConfig(db_path=db_path),
        refresh=RefreshConfig(inter_item_delay_seconds=0),
    )


@pytest.fixture
def notifier() -> MagicMock:
    return MagicMock(spec=["on_submission", "on_report", "send_rate_alert"])


@pytest.fixture
def service(app_config: AppConfig, notifier: MagicMock) -> CatalogService:
    return CatalogService(app_config, notifier=notifier)


# ── Sample domain object factories ────────────────────────────────────────────

@pytest.fixture
def now() -> datetime:
    """Fixed reference time used across ranking, trust and alert tests."""
    return NOW


@pytest.fixture
def make_record() -> Callable[..., RateRecord]:
    """Factory for ``RateRecord`` objects with sensible defaults."""

    def _make(**overrides) -> RateRecord:
        values = {
            "record_id": 1,
            "institution_name": "Ally Bank",
            "account_type": "savings",
            "rate": 4.25,
            "apy": 4.35,
            "min_deposit": 0.0,
            "features": frozenset({"No Monthly Fee", "Online Banking"}),
            "source_origin": "scraped",
            "verification_count": 0,
            "report_count": 0,
            "last_verified_at": NOW,
            "created_at": NOW,
            "updated_at": NOW,
        }
        values.update(overrides)
        return RateRecord(**values)

    return _make


@pytest.fixture
def sample_observation() -> Observation:
    """A valid scraped ``Observation`` for Ally Bank savings."""
    return Observation(
        institution_name="Ally Bank",
        account_type="savings",
        rate=4.25,
        apy=4.35,
        min_deposit=0,
        features=["No Monthly Fee", "Online Banking"],
        origin="scraped",
        source_url="https://www.ally.com/bank/online-savings-account/",
    )


@pytest.fixture
def sample_preferences() -> Preferences:
    return Preferences(
        account_type="savings",
        max_min_deposit=1000,
        preferred_features=["No Monthly Fee", "Mobile Banking"],
    )
