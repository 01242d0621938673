"""
Tests for the batch stages that write sourced rates into the catalog.

What we test
------------
PipelineStage (via a minimal subclass):
  - run() returns RunMetadata with status='success' and rows_processed.
  - A raising _execute() is re-raised and recorded as status='failed'.

FullRefreshStage:
  - The fixture source creates one record per (institution, type); a second
    sweep updates the same records instead of adding new ones.
  - The reset-trust policy zeroes counters built up since the last sweep.
  - Per-item failures are counted and skipped; the sweep carries on.
  - The inter-item delay is applied between items, never before the first.

SearchUpdateStage:
  - Low-confidence / missing fixture answers are skipped.
  - The preserve-trust policy keeps verification history on update.
  - An unknown account type in the request is rejected.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from rate_catalog.catalog.service import CatalogService
from rate_catalog.config import AppConfig, DatabaseConfig, RefreshConfig
from rate_catalog.db.connection import get_connection
from rate_catalog.db.repositories.run_repo import RunMetadataRepository
from rate_catalog.errors import ValidationError
from rate_catalog.ingestion.ai_search_client import AISearchClient
from rate_catalog.ingestion.sources import FixtureRateSource
from rate_catalog.models.meta import RunMetadata
from rate_catalog.models.rate import Observation, RateFilter
from rate_catalog.pipeline.base import PipelineStage
from rate_catalog.pipeline.full_refresh import FullRefreshStage
from rate_catalog.pipeline.search_update import SearchUpdateStage


class _StaticSource:
    source_name = "static"

    def __init__(self, observations: list[Observation]) -> None:
        self._observations = observations

    def fetch_observations(self) -> list[Observation]:
        return list(self._observations)


class _BrokenSource:
    source_name = "broken"

    def fetch_observations(self) -> list[Observation]:
        raise RuntimeError("rate sheet unreachable")


def _find(service: CatalogService, institution: str, account_type: str = "savings"):
    records = service.list_visible(RateFilter(account_type=account_type))
    matches = [r for r in records if r.institution_name == institution]
    assert len(matches) == 1
    return matches[0]


def _runs(db_path: str, stage: str) -> list[RunMetadata]:
    with get_connection(db_path) as conn:
        return RunMetadataRepository(conn).get_recent_runs(stage)


class TestPipelineStageContract:
    class _CountingStage(PipelineStage):
        stage_name = "full_refresh"

        def _execute(self, run: RunMetadata, rows: int = 0, **kwargs) -> int:
            return rows

    class _FailingStage(PipelineStage):
        stage_name = "alert_check"

        def _execute(self, run: RunMetadata, **kwargs) -> int:
            raise RuntimeError("disk full")

    def test_success_recorded(self, app_config, db_path):
        run = self._CountingStage(app_config).run(rows=7)
        assert run.status == "success"
        assert run.rows_processed == 7
        assert run.finished_at is not None
        stored = _runs(db_path, "full_refresh")[0]
        assert stored.run_slug == run.run_slug
        assert stored.status == "success"

    def test_failure_recorded_and_reraised(self, app_config, db_path):
        with pytest.raises(RuntimeError, match="disk full"):
            self._FailingStage(app_config).run()
        stored = _runs(db_path, "alert_check")[0]
        assert stored.status == "failed"
        assert stored.error_message == "disk full"

    def test_config_snapshot_stored(self, app_config, db_path):
        self._CountingStage(app_config).run()
        snapshot = _runs(db_path, "full_refresh")[0].config_snapshot
        assert snapshot["trust"]["apy_ceiling"] == pytest.approx(15.0)


class TestFullRefreshStage:
    def test_fixture_sweep_creates_then_updates(self, app_config, db_path):
        expected = len(FixtureRateSource.FIXTURE_RECORDS)
        first = FullRefreshStage(app_config).run()
        assert first.rows_processed == expected

        second = FullRefreshStage(app_config).run()
        assert second.rows_processed == expected

        service = CatalogService(app_config)
        assert service.admin_stats()["total"] == expected

    def test_reset_trust_zeroes_counters(self, app_config, now):
        service = CatalogService(app_config)
        FullRefreshStage(app_config).run()
        ally = _find(service, "Ally Bank")
        service.verify(ally.record_id, now)
        service.verify(ally.record_id, now)
        service.report(ally.record_id, "Rate looks stale", now)

        FullRefreshStage(app_config).run()
        refreshed = _find(service, "Ally Bank")
        assert refreshed.record_id == ally.record_id
        assert refreshed.verification_count == 0
        assert refreshed.report_count == 0

    def test_bad_items_skipped(self, app_config):
        source = _StaticSource([
            Observation(institution_name="Ally Bank", account_type="savings",
                        rate=4.25, apy=4.35, origin="scraped"),
            Observation(institution_name="Ally Bank", account_type="brokerage",
                        rate=4.25, origin="scraped"),
            Observation(institution_name="Marcus", account_type="savings",
                        rate=4.10, apy=4.20, origin="scraped"),
        ])
        run = FullRefreshStage(app_config, source=source).run()
        assert run.status == "success"
        assert run.rows_processed == 2

    def test_no_data_not_counted(self, app_config):
        source = _StaticSource([
            Observation(institution_name="Tiny CU", account_type="checking",
                        rate=0.0, apy=0.0, origin="scraped"),
        ])
        assert FullRefreshStage(app_config, source=source).run().rows_processed == 0
        assert CatalogService(app_config).admin_stats()["total"] == 0

    def test_source_failure_fails_run(self, app_config, db_path):
        with pytest.raises(RuntimeError):
            FullRefreshStage(app_config, source=_BrokenSource()).run()
        assert _runs(db_path, "full_refresh")[0].status == "failed"

    def test_delay_between_items(self, db_path):
        config = AppConfig(
            database=DatabaseConfig(db_path=db_path),
            refresh=RefreshConfig(inter_item_delay_seconds=1.5),
        )
        sleep = MagicMock()
        FullRefreshStage(config, sleep=sleep).run()
        assert sleep.call_count == len(FixtureRateSource.FIXTURE_RECORDS) - 1
        sleep.assert_called_with(1.5)


class TestSearchUpdateStage:
    def test_skips_unconfident_answers(self, app_config):
        stage = SearchUpdateStage(app_config, client=AISearchClient())
        run = stage.run(
            institution_names=["Ally Bank", "Marcus by Goldman Sachs", "Chase Bank"],
            account_types=["savings", "checking"],
        )
        assert run.rows_processed == 2
        service = CatalogService(app_config)
        assert service.list_visible(RateFilter(account_type="checking")) == []

    def test_preserve_trust_keeps_history(self, app_config, now):
        service = CatalogService(app_config)
        FullRefreshStage(app_config).run()
        ally = _find(service, "Ally Bank")
        service.verify(ally.record_id, now)
        service.verify(ally.record_id, now)

        SearchUpdateStage(app_config, client=AISearchClient()).run(
            institution_names=["Ally Bank"], account_types=["savings"],
        )
        updated = _find(service, "Ally Bank")
        assert updated.record_id == ally.record_id
        assert updated.apy == pytest.approx(4.30)
        assert updated.source_origin == "api"
        assert updated.verification_count == 2

    def test_cd_term_carried(self, app_config):
        SearchUpdateStage(app_config, client=AISearchClient()).run(
            institution_names=["Ally Bank"], account_types=["cd"],
        )
        cd = _find(CatalogService(app_config), "Ally Bank", "cd")
        assert cd.term == 12

    def test_unknown_account_type(self, app_config):
        stage = SearchUpdateStage(app_config, client=AISearchClient())
        with pytest.raises(ValidationError):
            stage.run(institution_names=["Ally Bank"], account_types=["brokerage"])
