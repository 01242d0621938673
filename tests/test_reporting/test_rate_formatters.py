"""Tests for the ASCII CLI formatters."""

from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

from rate_catalog.models.alert import RateAlert
from rate_catalog.models.meta import RunMetadata
from rate_catalog.models.recommendation import Recommendation
from rate_catalog.reporting.formatters import (
    format_admin_stats,
    format_admin_table,
    format_alerts,
    format_rate_table,
    format_recommendations,
    format_run_history,
)


class TestFormatRateTable:
    def test_rows(self, make_record):
        out = format_rate_table(
            [make_record(record_id=12, institution_name="Barclays", apy=4.65, min_deposit=1500)],
            title="Savings",
        )
        assert "=== Savings ===" in out
        assert "Barclays" in out
        assert "4.65%" in out
        assert "$1,500" in out
        assert "+0/-0" in out
        assert "1 rate(s)" in out

    def test_cd_term_shown(self, make_record):
        out = format_rate_table([make_record(account_type="cd", term=18)])
        assert "18mo" in out

    def test_empty(self):
        assert "(no rates match" in format_rate_table([])


class TestFormatAdminTable:
    def test_hidden_and_flagged(self, make_record):
        hidden = make_record(
            record_id=3, report_count=4, verification_count=1,
            notes="[AUTO-FLAGGED: exceeds 15% APY] too good",
        )
        visible = make_record(record_id=4)
        out = format_admin_table([hidden, visible], [hidden], threshold=3)
        assert "High reports (>= 3)" in out
        assert "reports=4" in out
        assert "[HIDDEN]" in out
        assert "[OK]" in out
        assert "[AUTO-FLAGGED: exceeds 15% APY]" in out

    def test_empty(self):
        out = format_admin_table([], [], threshold=3)
        assert "(none)" in out
        assert "(catalog is empty)" in out


class TestFormatAdminStats:
    def test_counts(self):
        out = format_admin_stats(
            {"total": 9, "community": 2, "scraped": 6, "api": 1,
             "reported": 3, "high_reports": 1, "hidden": 2}
        )
        assert "Total records:      9" in out
        assert "community=2  scraped=6  api=1" in out
        assert "Hidden from public: 2" in out


class TestFormatRecommendations:
    def test_rows(self, make_record):
        rec = Recommendation(record=make_record(), score=87.5, reasoning="Excellent 4.35% APY.")
        out = format_recommendations([rec], "savings")
        assert "Ranked by: rules" in out
        assert "87.5" in out
        assert "Excellent 4.35% APY." in out

    def test_empty(self):
        assert "(no visible rates match" in format_recommendations([], "cd")


class TestFormatAlerts:
    def test_rows(self, now):
        alert = RateAlert(
            alert_id=5, email="saver@example.com", account_type="cd",
            target_rate=4.5, frequency="weekly", last_notified_at=now,
        )
        out = format_alerts([alert], "saver@example.com")
        assert "4.50%" in out
        assert "weekly" in out
        assert now.strftime("%Y-%m-%d") in out

    def test_empty(self):
        assert "(no active alerts" in format_alerts([], "saver@example.com")


class TestFormatRunHistory:
    def test_finished_and_failed(self, now):
        done = RunMetadata(
            run_slug=str(uuid4()), pipeline_stage="full_refresh", status="success",
            config_snapshot={}, rows_processed=15, started_at=now,
            finished_at=now + timedelta(seconds=42),
        )
        failed = RunMetadata(
            run_slug=str(uuid4()), pipeline_stage="search_update", status="failed",
            config_snapshot={}, started_at=now, error_message="API down",
        )
        out = format_run_history([done, failed])
        assert "42.0s" in out
        assert "running" in out
        assert "error: API down" in out

    def test_empty(self):
        assert "(no runs recorded yet)" in format_run_history([])
