"""
Tests for CatalogService, the facade the CLI and batch stages call.

What we test
------------
Submissions:
  - Community submissions are persisted and the admin is notified.
  - Non-community origins are refused by submit; community by merge_sourced.
  - A failing notifier never undoes the committed record.
  - NaN or infinite rates are rejected as ValidationError before any write.

Ledger:
  - report() notifies the admin with the trimmed reason.

Ranking & listings:
  - rank() returns at most top_n rule-based recommendations, hidden
    records excluded, min_rate honoured.
  - Unknown or mismatched account types raise ValidationError.
  - An AI ranker is preferred; UpstreamUnavailable falls back to the rules.
  - list_visible() applies the location filter (national OR state/zip).

Alerts:
  - create_alert() inserts, then retargets the same active alert.
  - Invalid email / target above the configured max raise ValidationError.
  - Instant alerts with matches are sent immediately and stamped.
  - A failed send leaves last_notified_at unset.
  - deactivate_alert() of an unknown id raises NotFoundError.

Store failures:
  - An unopenable database surfaces as PersistenceError.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from rate_catalog.catalog.service import CatalogService
from rate_catalog.config import AlertsConfig, AppConfig, DatabaseConfig
from rate_catalog.errors import (
    NotFoundError,
    NotificationFailure,
    PersistenceError,
    UpstreamUnavailable,
    ValidationError,
)
from rate_catalog.models.rate import RateFilter
from rate_catalog.models.recommendation import Preferences, Recommendation
from rate_catalog.taxonomy.rate_taxonomy import AlertFrequency, RefreshPolicy


def _sourced(service, name, apy, account_type="savings", **extra):
    return service.merge_sourced_observation(
        {
            "institution_name": name,
            "account_type": account_type,
            "rate": apy,
            "apy": apy,
            "origin": "scraped",
            **extra,
        },
        RefreshPolicy.RESET_TRUST,
    )


def _community(service, name, apy, **extra):
    return service.submit_community_observation(
        {"institution_name": name, "account_type": "savings", "rate": apy, "apy": apy, **extra}
    )


class TestSubmissions:
    def test_submit_persists_and_notifies(self, service, notifier):
        record = _community(service, "Hometown CU", 4.1, notes="Seen in branch")
        assert record.record_id > 0
        assert record.verification_count == 1
        notifier.on_submission.assert_called_once_with(record)

    def test_submit_rejects_sourced_origin(self, service):
        with pytest.raises(ValidationError):
            service.submit_community_observation(
                {"institution_name": "Ally Bank", "account_type": "savings",
                 "rate": 4.2, "origin": "scraped"}
            )

    def test_submit_rejects_invalid_observation(self, service):
        with pytest.raises(ValidationError):
            service.submit_community_observation(
                {"institution_name": "Ally Bank", "account_type": "savings", "rate": -1}
            )

    def test_merge_sourced_rejects_community(self, service):
        with pytest.raises(ValidationError):
            service.merge_sourced(
                {"institution_name": "Ally Bank", "account_type": "savings", "rate": 4.2}
            )

    def test_notifier_failure_keeps_record(self, service, notifier):
        notifier.on_submission.side_effect = NotificationFailure("smtp down")
        record = _community(service, "Hometown CU", 4.1)
        view = service.admin_view()
        assert [r.record_id for r in view.records] == [record.record_id]

    def test_merge_sourced_observation_no_data(self, service):
        assert _sourced(service, "Empty Bank", 0.0) is None

    @pytest.mark.parametrize("bad_rate", ["nan", "inf", "-inf"])
    def test_submit_rejects_non_finite_rate(self, service, notifier, bad_rate):
        with pytest.raises(ValidationError) as exc_info:
            service.submit_community_observation(
                {"institution_name": "Hometown CU", "account_type": "savings", "rate": bad_rate}
            )
        assert exc_info.value.field == "rate"
        notifier.on_submission.assert_not_called()

    def test_merge_sourced_rejects_infinite_rate(self, service):
        with pytest.raises(ValidationError):
            service.merge_sourced_observation(
                {"institution_name": "Ally Bank", "account_type": "savings",
                 "rate": "inf", "origin": "scraped"}
            )
        assert service.list_visible(RateFilter()) == []


class TestReport:
    def test_report_notifies_admin(self, service, notifier):
        record = _sourced(service, "Ally Bank", 4.35)
        snapshot = service.report(record.record_id, "  Rate dropped  ")
        assert snapshot.report_count == 1
        args = notifier.on_report.call_args.args
        assert args[0].record_id == record.record_id
        assert args[1] == "Rate dropped"

    def test_report_unknown(self, service, notifier):
        with pytest.raises(NotFoundError):
            service.report(123, "gone")
        notifier.on_report.assert_not_called()


class TestRank:
    @pytest.fixture
    def seeded(self, service):
        for idx, apy in enumerate([4.65, 4.60, 4.35, 4.25, 4.20, 4.05, 0.15]):
            _sourced(service, f"Bank {idx}", apy)
        hidden = _community(service, "Too Good CU", 30.0)
        return hidden

    def test_top_n_rule_based(self, service, seeded):
        recs = service.rank("savings", Preferences(account_type="savings"))
        assert len(recs) == 5
        assert all(rec.ranked_by == "rules" for rec in recs)
        assert seeded.record_id not in {rec.record.record_id for rec in recs}
        scores = [rec.score for rec in recs]
        assert scores == sorted(scores, reverse=True)

    def test_min_rate_filters_candidates(self, service, seeded):
        recs = service.rank("savings", Preferences(account_type="savings", min_rate=4.5))
        assert {rec.record.institution_name for rec in recs} == {"Bank 0", "Bank 1"}

    def test_empty_catalog(self, service):
        assert service.rank("cd", Preferences(account_type="cd")) == []

    def test_unknown_type(self, service):
        with pytest.raises(ValidationError):
            service.rank("brokerage", Preferences(account_type="savings"))

    def test_mismatched_type(self, service):
        with pytest.raises(ValidationError):
            service.rank("checking", Preferences(account_type="savings"))

    def test_ai_ranker_preferred(self, app_config, notifier, seeded):
        ai_ranker = MagicMock()
        ai_ranker.rank.side_effect = lambda records, prefs, top_n: [
            Recommendation(record=records[-1], score=99, reasoning="AI pick", ranked_by="ai")
        ]
        service = CatalogService(app_config, notifier=notifier, ai_ranker=ai_ranker)
        recs = service.rank("savings", Preferences(account_type="savings"))
        assert [rec.ranked_by for rec in recs] == ["ai"]
        assert recs[0].record.institution_name == "Bank 6"

    def test_ai_failure_falls_back(self, app_config, notifier, seeded):
        ai_ranker = MagicMock()
        ai_ranker.rank.side_effect = UpstreamUnavailable("timeout")
        service = CatalogService(app_config, notifier=notifier, ai_ranker=ai_ranker)
        recs = service.rank("savings", Preferences(account_type="savings"))
        assert len(recs) == 5
        assert all(rec.ranked_by == "rules" for rec in recs)


class TestListings:
    def test_location_filter(self, service):
        _sourced(service, "Ally Bank", 4.35)
        ohio = _community(service, "Columbus CU", 4.0, location={"state": "OH"})
        _community(service, "Austin CU", 4.1, location={"state": "TX"})

        records = service.list_visible(RateFilter(state="oh"))
        names = {r.institution_name for r in records}
        assert names == {"Ally Bank", "Columbus CU"}
        assert ohio.record_id in {r.record_id for r in records}

    def test_filters_are_anded(self, service):
        _sourced(service, "Ally Bank", 4.35)
        _sourced(service, "KeyBank", 0.02, min_deposit=25)
        _sourced(service, "Huntington Bank", 0.01, account_type="checking")
        records = service.list_visible(
            RateFilter(account_type="savings", min_rate=1.0, max_min_deposit=100)
        )
        assert [r.institution_name for r in records] == ["Ally Bank"]

    def test_top_rates_excludes_hidden(self, service):
        _sourced(service, "Ally Bank", 4.35)
        _community(service, "Too Good CU", 30.0)
        assert [r.institution_name for r in service.top_rates("savings")] == ["Ally Bank"]


class TestAlerts:
    def test_create_then_retarget(self, service):
        first = service.create_alert("Saver@Example.com", "savings", 4.5)
        second = service.create_alert("saver@example.com", "savings", 5.0, "weekly")
        assert second.alert_id == first.alert_id
        assert second.target_rate == pytest.approx(5.0)
        assert second.frequency is AlertFrequency.WEEKLY
        assert len(service.alerts_for("saver@example.com")) == 1

    def test_invalid_email(self, service):
        with pytest.raises(ValidationError):
            service.create_alert("not-an-email", "savings", 4.5)

    def test_target_above_configured_max(self, db_path, notifier):
        config = AppConfig(
            database=DatabaseConfig(db_path=db_path),
            alerts=AlertsConfig(max_target_rate=10.0),
        )
        service = CatalogService(config, notifier=notifier)
        with pytest.raises(ValidationError):
            service.create_alert("saver@example.com", "savings", 12.0)

    def test_instant_alert_sent_immediately(self, service, notifier, now):
        _sourced(service, "Barclays", 4.65)
        _sourced(service, "Ally Bank", 4.35)
        alert = service.create_alert("saver@example.com", "savings", 4.5, "instant", now=now)
        assert alert.last_notified_at == now
        sent_alert, records = notifier.send_rate_alert.call_args.args
        assert sent_alert.alert_id == alert.alert_id
        assert [r.institution_name for r in records] == ["Barclays"]
        assert service.alerts_for("saver@example.com")[0].last_notified_at == now

    def test_daily_alert_not_sent_on_create(self, service, notifier):
        _sourced(service, "Barclays", 4.65)
        alert = service.create_alert("saver@example.com", "savings", 4.5)
        assert alert.last_notified_at is None
        notifier.send_rate_alert.assert_not_called()

    def test_failed_send_not_stamped(self, service, notifier, now):
        _sourced(service, "Barclays", 4.65)
        notifier.send_rate_alert.side_effect = NotificationFailure("smtp down")
        alert = service.create_alert("saver@example.com", "savings", 4.5, "instant", now=now)
        assert alert.last_notified_at is None
        assert service.alerts_for("saver@example.com")[0].last_notified_at is None

    def test_deactivate(self, service):
        alert = service.create_alert("saver@example.com", "cd", 4.0)
        service.deactivate_alert(alert.alert_id)
        assert service.alerts_for("saver@example.com") == []
        assert service.active_alerts() == []

    def test_deactivate_unknown(self, service):
        with pytest.raises(NotFoundError):
            service.deactivate_alert(77)


class TestStoreFailures:
    def test_unopenable_store_raises_persistence_error(self, tmp_path, notifier):
        config = AppConfig(database=DatabaseConfig(db_path=str(tmp_path)))
        service = CatalogService(config, notifier=notifier)
        with pytest.raises(PersistenceError):
            service.verify(1)
