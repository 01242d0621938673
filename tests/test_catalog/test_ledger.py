"""
Tests for the verification ledger.

What we test
------------
verify() / report():
  - Each call adds exactly one; verify stamps last_verified_at.
  - verify, report, verify on a fresh sourced record ends at 2/1, visible.
  - A later verify un-suppresses a hidden record without any unflag step.
  - Repeated calls count every time (no de-duplication).
  - Unknown ids raise NotFoundError; a blank reason raises ValidationError.
  - Parallel calls through CatalogService on a file database lose no updates.

Moderation:
  - admin_view lists hidden records and fills the high-reports bucket.
  - admin_stats totals by origin and report status.
  - delete / bulk_delete / reset_counters.
  - patch validates fields, rejects counters, and round-trips a CD term.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from rate_catalog.catalog.ledger import VerificationLedger
from rate_catalog.catalog.normalizer import normalize_observation
from rate_catalog.db.repositories.rate_repo import RateRecordRepository
from rate_catalog.errors import NotFoundError, ValidationError
from rate_catalog.models.rate import Observation
from rate_catalog.taxonomy.rate_taxonomy import AvailabilityScope


@pytest.fixture
def repo(in_memory_db) -> RateRecordRepository:
    return RateRecordRepository(in_memory_db)


@pytest.fixture
def ledger(repo) -> VerificationLedger:
    return VerificationLedger(repo, high_reports_threshold=3)


def _insert(repo, now, verifications=0, reports=0, **overrides) -> int:
    values = {
        "institution_name": "Ally Bank",
        "account_type": "savings",
        "rate": 4.25,
        "apy": 4.35,
        "origin": "scraped",
    }
    values.update(overrides)
    candidate = normalize_observation(Observation(**values))
    return repo.insert(
        candidate,
        verification_count=verifications,
        report_count=reports,
        last_verified_at=None,
        last_scraped_at=now,
        now=now,
    )


class TestCounters:
    def test_verify_increments_and_stamps(self, ledger, repo, now):
        record_id = _insert(repo, now)
        later = now + timedelta(days=1)
        snapshot = ledger.verify(record_id, later)
        assert snapshot.verification_count == 1
        assert snapshot.report_count == 0
        assert snapshot.last_verified_at == later

    def test_report_does_not_stamp_verification(self, ledger, repo, now):
        record_id = _insert(repo, now)
        snapshot = ledger.report(record_id, "Rate changed last week", now)
        assert snapshot.report_count == 1
        assert snapshot.last_verified_at is None
        assert not snapshot.is_visible

    def test_verify_report_verify(self, ledger, repo, now):
        record_id = _insert(repo, now)
        ledger.verify(record_id, now)
        ledger.report(record_id, "Looks stale", now)
        snapshot = ledger.verify(record_id, now)
        assert (snapshot.verification_count, snapshot.report_count) == (2, 1)
        assert snapshot.is_visible

    def test_verify_unsuppresses_hidden_record(self, ledger, repo, now):
        record_id = _insert(repo, now, verifications=0, reports=1)
        assert not repo.get_by_id(record_id).is_visible
        ledger.verify(record_id, now)
        assert repo.get_by_id(record_id).is_visible
        assert [r.record_id for r in repo.top_rates("savings")] == [record_id]

    def test_repeated_calls_count_twice(self, ledger, repo, now):
        record_id = _insert(repo, now)
        ledger.verify(record_id, now)
        snapshot = ledger.verify(record_id, now)
        assert snapshot.verification_count == 2

    def test_verify_unknown_id(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.verify(999)

    def test_report_unknown_id(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.report(999, "bad")

    def test_report_blank_reason(self, ledger, repo, now):
        record_id = _insert(repo, now)
        with pytest.raises(ValidationError):
            ledger.report(record_id, "   ")
        assert repo.get_counters(record_id).report_count == 0


class TestAdminView:
    def test_lists_hidden_records_and_high_reports(self, ledger, repo, now):
        visible = _insert(repo, now, verifications=2, reports=0)
        hidden = _insert(repo, now, institution_name="Sketchy Bank", apy=9.0,
                         verifications=1, reports=4)
        view = ledger.admin_view()
        assert {r.record_id for r in view.records} == {visible, hidden}
        assert [r.record_id for r in view.high_reports] == [hidden]

    def test_filters_and_sort(self, ledger, repo, now):
        _insert(repo, now)
        _insert(repo, now, institution_name="Huntington Bank", account_type="checking",
                rate=0.01, apy=0.01)
        view = ledger.admin_view(account_type="checking")
        assert [r.institution_name for r in view.records] == ["Huntington Bank"]

    def test_unknown_sort_rejected(self, ledger):
        with pytest.raises(ValueError):
            ledger.admin_view(sort="alphabetical")  # type: ignore[arg-type]

    def test_stats(self, ledger, repo, now):
        _insert(repo, now)
        _insert(repo, now, institution_name="Marcus", origin="api")
        _insert(repo, now, institution_name="Hometown CU", origin="community",
                verifications=0, reports=3)
        _insert(repo, now, institution_name="Other CU", origin="community",
                verifications=2, reports=1)
        stats = ledger.admin_stats()
        assert stats == {
            "total": 4,
            "community": 2,
            "scraped": 1,
            "api": 1,
            "reported": 2,
            "high_reports": 1,
            "hidden": 1,
        }


class TestModeration:
    def test_delete(self, ledger, repo, now):
        record_id = _insert(repo, now)
        ledger.delete(record_id)
        assert repo.get_by_id(record_id) is None

    def test_delete_unknown(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.delete(42)

    def test_bulk_delete_ignores_unknown_ids(self, ledger, repo, now):
        a = _insert(repo, now)
        b = _insert(repo, now, institution_name="Marcus")
        assert ledger.bulk_delete([a, b, 999]) == 2
        assert repo.admin_list() == []

    def test_bulk_delete_empty_rejected(self, ledger):
        with pytest.raises(ValidationError):
            ledger.bulk_delete([])

    def test_reset_counters(self, ledger, repo, now):
        record_id = _insert(repo, now, verifications=5, reports=4)
        snapshot = ledger.reset_counters(record_id, now)
        assert (snapshot.verification_count, snapshot.report_count) == (0, 0)

    def test_reset_unknown(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.reset_counters(7)


class TestPatch:
    def test_patch_values(self, ledger, repo, now):
        record_id = _insert(repo, now)
        patched = ledger.patch(
            record_id,
            {"apy": "4.50", "features": ["ATM Card", " "], "availability": "REGIONAL",
             "notes": "Checked by moderator"},
            now,
        )
        assert patched.apy == pytest.approx(4.50)
        assert patched.features == frozenset({"ATM Card"})
        assert patched.availability is AvailabilityScope.REGIONAL
        assert patched.notes == "Checked by moderator"

    def test_cd_term_round_trip(self, ledger, repo, now):
        record_id = _insert(repo, now, account_type="cd", term=12)
        assert repo.get_by_id(record_id).term == 12
        assert ledger.patch(record_id, {"term": 18}, now).term == 18

    def test_term_rejected_on_savings(self, ledger, repo, now):
        record_id = _insert(repo, now)
        with pytest.raises(ValidationError):
            ledger.patch(record_id, {"term": 12}, now)

    def test_counters_not_patchable(self, ledger, repo, now):
        record_id = _insert(repo, now)
        with pytest.raises(ValidationError):
            ledger.patch(record_id, {"verification_count": 50}, now)

    @pytest.mark.parametrize(
        "changes",
        [{}, {"rate": "abc"}, {"min_deposit": -5}, {"institution_name": " "},
         {"availability": "galactic"}, {"rate": "nan"}, {"apy": float("inf")}],
    )
    def test_invalid_patches(self, ledger, repo, now, changes):
        record_id = _insert(repo, now)
        with pytest.raises(ValidationError):
            ledger.patch(record_id, changes, now)

    def test_patch_unknown_record(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.patch(404, {"notes": "x"})

    def test_record_deleted_during_patch(self, make_record, now):
        repo = MagicMock(spec=RateRecordRepository)
        repo.get_by_id.side_effect = [make_record(record_id=9), None]
        ledger = VerificationLedger(repo, high_reports_threshold=3)
        with pytest.raises(NotFoundError):
            ledger.patch(9, {"notes": "Updated by moderator"}, now)


class TestConcurrentCounters:
    """Parallel verify/report calls against the file-backed store lose no updates."""

    WORKERS = 8
    CALLS = 40

    def test_parallel_verifies_all_counted(self, service):
        record = service.merge_sourced_observation(
            {"institution_name": "Ally Bank", "account_type": "savings",
             "rate": 4.25, "apy": 4.35, "origin": "scraped"}
        )
        with ThreadPoolExecutor(max_workers=self.WORKERS) as pool:
            list(pool.map(lambda _: service.verify(record.record_id), range(self.CALLS)))

        snapshot = service.verify(record.record_id)
        assert snapshot.verification_count == self.CALLS + 1
        assert snapshot.report_count == 0

    def test_parallel_verify_and_report(self, service):
        record = service.merge_sourced_observation(
            {"institution_name": "Ally Bank", "account_type": "savings",
             "rate": 4.25, "apy": 4.35, "origin": "scraped"}
        )

        def _call(i: int):
            if i % 2:
                return service.report(record.record_id, "Rate changed")
            return service.verify(record.record_id)

        with ThreadPoolExecutor(max_workers=self.WORKERS) as pool:
            list(pool.map(_call, range(self.CALLS)))

        stored = service.admin_view().records[0]
        assert stored.verification_count == self.CALLS // 2
        assert stored.report_count == self.CALLS // 2
