"""
Tests for the catalog merge engine.

What we test
------------
strategy_for():
  - community → AlwaysNewRecord; scraped/api → UpsertByKey(policy).

MergeEngine.merge() with UpsertByKey:
  - First sourced observation creates a record (0/0, last_verified_at = now).
  - A second observation for the same key updates in place (same id).
  - preserve-trust keeps counters; reset-trust zeroes them.
  - source_url and features survive an update without them; a new
    non-empty feature set replaces the old one.
  - No existing record and apy <= 0 → NO_DATA, nothing written.
  - An existing record is updated even when the new apy is 0.
  - Community rows with the same key are never matched or overwritten.

MergeEngine.merge() with AlwaysNewRecord:
  - Every community submission becomes its own record.
  - The trust scorer decides the initial counters.

Guards:
  - A strategy that does not fit the candidate's origin raises ValueError.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from rate_catalog.catalog.merge import (
    AlwaysNewRecord,
    MergeEngine,
    MergeOutcome,
    UpsertByKey,
    strategy_for,
)
from rate_catalog.catalog.normalizer import normalize_observation
from rate_catalog.db.repositories.rate_repo import RateRecordRepository
from rate_catalog.models.rate import Observation
from rate_catalog.taxonomy.rate_taxonomy import RefreshPolicy, SourceOrigin


def _candidate(**overrides):
    values = {
        "institution_name": "Ally Bank",
        "account_type": "savings",
        "rate": 4.25,
        "apy": 4.35,
        "origin": "scraped",
        "source_url": "https://www.ally.com/bank/online-savings-account/",
    }
    values.update(overrides)
    return normalize_observation(Observation(**values))


@pytest.fixture
def repo(in_memory_db) -> RateRecordRepository:
    return RateRecordRepository(in_memory_db)


@pytest.fixture
def engine(repo) -> MergeEngine:
    return MergeEngine(repo)


class TestStrategyFor:
    def test_community_always_new(self):
        assert strategy_for(SourceOrigin.COMMUNITY) == AlwaysNewRecord()

    def test_sourced_upsert_with_policy(self):
        assert strategy_for(SourceOrigin.SCRAPED, RefreshPolicy.RESET_TRUST) == UpsertByKey(
            RefreshPolicy.RESET_TRUST
        )
        assert strategy_for(SourceOrigin.API) == UpsertByKey(RefreshPolicy.PRESERVE_TRUST)


class TestUpsertByKey:
    def test_creates_record(self, engine, now):
        result = engine.merge(_candidate(), UpsertByKey(), now)
        assert result.outcome is MergeOutcome.CREATED
        record = result.record
        assert record is not None
        assert record.verification_count == 0
        assert record.report_count == 0
        assert record.last_verified_at == now
        assert record.last_scraped_at == now

    def test_update_preserves_trust(self, engine, repo, now):
        """Ally savings 4.25/4.35 with 7 verifications, 1 report; AI search finds 4.20/4.30."""
        created = engine.merge(_candidate(), UpsertByKey(), now).record
        for _ in range(7):
            repo.increment_counter(created.record_id, "verification_count", now)
        repo.increment_counter(created.record_id, "report_count", now)

        later = now + timedelta(hours=3)
        result = engine.merge(
            _candidate(rate=4.20, apy=4.30, origin="api"),
            UpsertByKey(RefreshPolicy.PRESERVE_TRUST),
            later,
        )

        assert result.outcome is MergeOutcome.UPDATED
        record = result.record
        assert record.record_id == created.record_id
        assert record.rate == pytest.approx(4.20)
        assert record.apy == pytest.approx(4.30)
        assert record.verification_count == 7
        assert record.report_count == 1
        assert record.source_origin is SourceOrigin.API
        assert record.last_scraped_at == later

    def test_update_resets_trust(self, engine, repo, now):
        created = engine.merge(_candidate(), UpsertByKey(), now).record
        for _ in range(7):
            repo.increment_counter(created.record_id, "verification_count", now)
        repo.increment_counter(created.record_id, "report_count", now)

        result = engine.merge(
            _candidate(rate=4.20, apy=4.30),
            UpsertByKey(RefreshPolicy.RESET_TRUST),
            now,
        )
        assert result.record.verification_count == 0
        assert result.record.report_count == 0
        assert result.record.apy == pytest.approx(4.30)

    def test_one_record_per_key(self, engine, repo, now):
        engine.merge(_candidate(), UpsertByKey(), now)
        engine.merge(_candidate(apy=4.40), UpsertByKey(), now)
        engine.merge(_candidate(apy=4.45, origin="api"), UpsertByKey(), now)
        records = repo.admin_list()
        assert len(records) == 1
        assert records[0].apy == pytest.approx(4.45)

    def test_source_url_kept_when_absent(self, engine, now):
        engine.merge(_candidate(), UpsertByKey(), now)
        result = engine.merge(_candidate(apy=4.40, source_url=None), UpsertByKey(), now)
        assert result.record.source_url == "https://www.ally.com/bank/online-savings-account/"

    def test_features_overwritten(self, engine, now):
        engine.merge(_candidate(features=["Online Banking"]), UpsertByKey(), now)
        result = engine.merge(_candidate(features=["ATM Card"]), UpsertByKey(), now)
        assert result.record.features == frozenset({"ATM Card"})

    def test_features_kept_when_absent(self, engine, now):
        engine.merge(_candidate(features=["Online Banking", "FDIC Insured"]), UpsertByKey(), now)
        result = engine.merge(_candidate(apy=4.40), UpsertByKey(), now)
        assert result.record.apy == pytest.approx(4.40)
        assert result.record.features == frozenset({"Online Banking", "FDIC Insured"})

    def test_no_data_without_existing_record(self, engine, repo, now):
        result = engine.merge(_candidate(rate=0.0, apy=0.0), UpsertByKey(), now)
        assert result.outcome is MergeOutcome.NO_DATA
        assert result.record is None
        assert repo.admin_list() == []

    def test_existing_record_updated_with_zero_apy(self, engine, now):
        engine.merge(_candidate(), UpsertByKey(), now)
        result = engine.merge(_candidate(rate=0.0, apy=0.0), UpsertByKey(), now)
        assert result.outcome is MergeOutcome.UPDATED
        assert result.record.apy == 0.0

    def test_community_row_never_overwritten(self, engine, repo, now):
        community = engine.merge(
            _candidate(origin="community", apy=4.50, source_url=None), AlwaysNewRecord(), now
        ).record

        result = engine.merge(_candidate(apy=4.10), UpsertByKey(), now)

        assert result.outcome is MergeOutcome.CREATED
        assert result.record.record_id != community.record_id
        untouched = repo.get_by_id(community.record_id)
        assert untouched.apy == pytest.approx(4.50)
        assert untouched.source_origin is SourceOrigin.COMMUNITY


class TestAlwaysNewRecord:
    def test_each_submission_is_a_new_record(self, engine, repo, now):
        first = engine.merge(_candidate(origin="community"), AlwaysNewRecord(), now).record
        second = engine.merge(_candidate(origin="community"), AlwaysNewRecord(), now).record
        assert first.record_id != second.record_id
        assert len(repo.admin_list()) == 2

    def test_unflagged_submission_counts_itself(self, engine, now):
        record = engine.merge(_candidate(origin="community"), AlwaysNewRecord(), now).record
        assert record.verification_count == 1
        assert record.report_count == 0
        assert record.is_visible

    def test_outlier_against_live_sourced_mean(self, engine, now):
        engine.merge(_candidate(institution_name="Marcus", apy=4.0), UpsertByKey(), now)
        engine.merge(_candidate(institution_name="Barclays", apy=5.0), UpsertByKey(), now)

        record = engine.merge(
            _candidate(institution_name="Hometown CU", origin="community", rate=9.5, apy=9.5,
                       notes="Promo rate"),
            AlwaysNewRecord(),
            now,
        ).record

        assert record.verification_count == 0
        assert record.report_count == 1
        assert not record.is_visible
        assert record.notes == "[AUTO-FLAGGED: 2.1x higher than average] Promo rate"


class TestStrategyGuards:
    def test_always_new_rejects_sourced(self, engine, now):
        with pytest.raises(ValueError):
            engine.merge(_candidate(), AlwaysNewRecord(), now)

    def test_upsert_rejects_community(self, engine, now):
        with pytest.raises(ValueError):
            engine.merge(_candidate(origin="community"), UpsertByKey(), now)
