"""
CatalogService - the operations the rate catalog exposes.

Each public method is one unit of work: it opens its own connection via
``get_connection()``, commits on success and rolls back on error.
Notifications are dispatched only after the connection has committed, and
through ``dispatch_safely()``, so a mail failure never undoes a catalog
change.

Usage::

    from rate_catalog.catalog.service import CatalogService
    from rate_catalog.config import load_config

    service = CatalogService(load_config())
    record = service.submit_community_observation({
        "institution_name": "Ally Bank", "account_type": "savings", "rate": 4.25,
    })
    service.verify(record.record_id)
"""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any, Optional, Union

import pydantic

from rate_catalog.catalog.ledger import AdminView, VerificationLedger
from rate_catalog.catalog.merge import MergeEngine, MergeResult, strategy_for
from rate_catalog.catalog.normalizer import normalize_observation, parse_observation
from rate_catalog.config import AppConfig
from rate_catalog.db.connection import get_connection
from rate_catalog.db.repositories.alert_repo import RateAlertRepository
from rate_catalog.db.repositories.rate_repo import AdminSort, RateRecordRepository
from rate_catalog.errors import NotFoundError, PersistenceError, ValidationError
from rate_catalog.models.alert import RateAlert
from rate_catalog.models.rate import CounterSnapshot, Observation, RateFilter, RateRecord
from rate_catalog.models.recommendation import Preferences, Recommendation
from rate_catalog.notify.notifier import LoggingNotifier, Notifier, dispatch_safely
from rate_catalog.recommendations.ranker import Ranker, rank_with_fallback
from rate_catalog.taxonomy.rate_taxonomy import (
    AccountType,
    AlertFrequency,
    RefreshPolicy,
    SourceOrigin,
)
from rate_catalog.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

ObservationInput = Union[Observation, dict[str, Any]]


class CatalogService:
    """Facade over the normalizer, merge engine, ledger, ranker and alerts.

    Args:
        config: Application configuration.
        db_path: Override for ``config.database.db_path``.
        notifier: Outbound notifications; defaults to ``LoggingNotifier``.
        ai_ranker: Optional AI ranking collaborator tried before the rules.
    """

    def __init__(
        self,
        config: AppConfig,
        db_path: Optional[str] = None,
        notifier: Optional[Notifier] = None,
        ai_ranker: Optional[Ranker] = None,
    ) -> None:
        self.config = config
        self.db_path = db_path or config.database.db_path
        self.notifier = notifier or LoggingNotifier()
        self.ai_ranker = ai_ranker

    # ── Submissions & merges ──────────────────────────────────────────────────

    def submit_community_observation(
        self,
        observation: ObservationInput,
        now: Optional[datetime] = None,
    ) -> RateRecord:
        """Normalize, trust-score and insert a community submission.

        Raises:
            ValidationError: If the observation is invalid or not a
                community observation.
        """
        candidate = normalize_observation(_as_observation(observation))
        if candidate.origin is not SourceOrigin.COMMUNITY:
            raise ValidationError(
                f"Community submissions must have origin 'community', got '{candidate.origin}'.",
                field="origin",
            )

        with self._connect() as conn:
            engine = MergeEngine(RateRecordRepository(conn), self.config.trust)
            result = engine.merge(candidate, strategy_for(candidate.origin), now or utcnow())

        if result.record is None:
            raise PersistenceError(
                f"Community submission for {candidate.institution_name!r} was not stored."
            )
        dispatch_safely(self.notifier.on_submission, result.record)
        return result.record

    def merge_sourced(
        self,
        observation: ObservationInput,
        refresh_policy: RefreshPolicy = RefreshPolicy.PRESERVE_TRUST,
        now: Optional[datetime] = None,
    ) -> MergeResult:
        """Upsert a scraped/api observation by (institution_name, account_type).

        Raises:
            ValidationError: If the observation is invalid or has origin
                ``community``.
        """
        candidate = normalize_observation(_as_observation(observation))
        if not candidate.origin.is_authoritative:
            raise ValidationError(
                "Sourced merges require origin 'scraped' or 'api', got 'community'.",
                field="origin",
            )

        with self._connect() as conn:
            engine = MergeEngine(RateRecordRepository(conn), self.config.trust)
            return engine.merge(
                candidate, strategy_for(candidate.origin, refresh_policy), now or utcnow()
            )

    def merge_sourced_observation(
        self,
        observation: ObservationInput,
        refresh_policy: RefreshPolicy = RefreshPolicy.PRESERVE_TRUST,
        now: Optional[datetime] = None,
    ) -> Optional[RateRecord]:
        """Like ``merge_sourced`` but returns only the resulting record.

        ``None`` means there was no existing record and no usable yield.
        """
        return self.merge_sourced(observation, refresh_policy, now).record

    # ── Verification ledger ───────────────────────────────────────────────────

    def verify(self, record_id: int, now: Optional[datetime] = None) -> CounterSnapshot:
        with self._connect() as conn:
            return self._ledger(conn).verify(record_id, now)

    def report(
        self,
        record_id: int,
        reason: str,
        now: Optional[datetime] = None,
    ) -> CounterSnapshot:
        """Count one community report and notify the admin.

        Raises:
            ValidationError: If ``reason`` is blank.
            NotFoundError: If ``record_id`` does not exist.
        """
        with self._connect() as conn:
            snapshot = self._ledger(conn).report(record_id, reason, now)
            record = RateRecordRepository(conn).get_by_id(record_id)

        if record is not None:
            dispatch_safely(self.notifier.on_report, record, reason.strip())
        return snapshot

    # ── Ranking & listings ────────────────────────────────────────────────────

    def rank(
        self,
        account_type: Union[AccountType, str],
        preferences: Preferences,
        candidate_limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> list[Recommendation]:
        """Return up to ``[ranking].top_n`` recommendations for ``account_type``.

        Raises:
            ValidationError: If ``account_type`` is unknown or disagrees with
                ``preferences.account_type``.
        """
        account_type = _as_account_type(account_type)
        if preferences.account_type is not account_type:
            raise ValidationError(
                f"Preferences are for '{preferences.account_type}', not '{account_type}'.",
                field="account_type",
            )

        with self._connect() as conn:
            candidates = RateRecordRepository(conn).ranking_candidates(
                account_type.value,
                preferences.min_rate,
                candidate_limit or self.config.ranking.candidate_limit,
            )

        logger.debug("Ranking %d candidate(s) for %s", len(candidates), account_type)
        return rank_with_fallback(
            candidates,
            preferences,
            self.ai_ranker,
            now or utcnow(),
            top_n=self.config.ranking.top_n,
        )

    def list_visible(self, rate_filter: Optional[RateFilter] = None) -> list[RateRecord]:
        """Publicly visible records matching every criterion in ``rate_filter``."""
        rate_filter = rate_filter or RateFilter(limit=self.config.ledger.public_list_limit)
        with self._connect() as conn:
            return RateRecordRepository(conn).find_visible(rate_filter)

    def top_rates(
        self, account_type: Union[AccountType, str], limit: int = 5
    ) -> list[RateRecord]:
        account_type = _as_account_type(account_type)
        with self._connect() as conn:
            return RateRecordRepository(conn).top_rates(account_type.value, limit)

    # ── Moderation ────────────────────────────────────────────────────────────

    def admin_view(
        self,
        origin: Optional[str] = None,
        account_type: Optional[str] = None,
        sort: AdminSort = "apy",
        limit: Optional[int] = None,
    ) -> AdminView:
        with self._connect() as conn:
            return self._ledger(conn).admin_view(
                origin, account_type, sort, limit or self.config.ledger.admin_list_limit
            )

    def admin_stats(self) -> dict[str, int]:
        with self._connect() as conn:
            return self._ledger(conn).admin_stats()

    def delete_record(self, record_id: int) -> None:
        with self._connect() as conn:
            self._ledger(conn).delete(record_id)

    def bulk_delete(self, record_ids: list[int]) -> int:
        with self._connect() as conn:
            return self._ledger(conn).bulk_delete(record_ids)

    def reset_counters(self, record_id: int) -> CounterSnapshot:
        with self._connect() as conn:
            return self._ledger(conn).reset_counters(record_id)

    def patch_record(self, record_id: int, changes: dict[str, Any]) -> RateRecord:
        with self._connect() as conn:
            return self._ledger(conn).patch(record_id, changes)

    # ── Rate alerts ───────────────────────────────────────────────────────────

    def create_alert(
        self,
        email: str,
        account_type: Union[AccountType, str],
        target_rate: float,
        frequency: Union[AlertFrequency, str] = AlertFrequency.DAILY,
        now: Optional[datetime] = None,
    ) -> RateAlert:
        """Create the active alert for (email, account_type), or retarget it.

        Instant alerts are checked against the catalog straight away.

        Raises:
            ValidationError: On a malformed email, unknown account type or
                frequency, or a target outside [0, max_target_rate].
        """
        now = now or utcnow()
        try:
            alert = RateAlert(
                email=email,
                account_type=account_type,
                target_rate=target_rate,
                frequency=frequency,
            )
        except pydantic.ValidationError as exc:
            first = exc.errors()[0]
            field = ".".join(str(p) for p in first.get("loc", ())) or None
            raise ValidationError(f"Invalid alert: {first.get('msg')}", field=field) from exc
        if alert.target_rate > self.config.alerts.max_target_rate:
            raise ValidationError(
                f"target_rate must be <= {self.config.alerts.max_target_rate:g}.",
                field="target_rate",
            )

        with self._connect() as conn:
            repo = RateAlertRepository(conn)
            existing = repo.find_active(alert.email, alert.account_type.value)
            if existing is not None and existing.alert_id is not None:
                repo.update_target(existing.alert_id, alert.target_rate, alert.frequency.value)
                alert_id = existing.alert_id
                logger.info("Updated rate alert %d for %s", alert_id, alert.email)
            else:
                alert_id = repo.insert(alert, now)
                logger.info("Created rate alert %d for %s", alert_id, alert.email)
            stored = repo.get_by_id(alert_id)
            matches: list[RateRecord] = []
            if alert.frequency is AlertFrequency.INSTANT:
                matches = RateRecordRepository(conn).meeting_target(
                    alert.account_type.value, alert.target_rate, self.config.alerts.max_matches
                )

        if stored is None:
            raise NotFoundError("Rate alert", alert_id)
        if matches and self.send_alert(stored, matches, now):
            stored = stored.model_copy(update={"last_notified_at": now})
        return stored

    def alerts_for(self, email: str) -> list[RateAlert]:
        with self._connect() as conn:
            return RateAlertRepository(conn).get_for_email(email.strip().lower())

    def active_alerts(self) -> list[RateAlert]:
        with self._connect() as conn:
            return RateAlertRepository(conn).get_all_active()

    def deactivate_alert(self, alert_id: int) -> None:
        with self._connect() as conn:
            if not RateAlertRepository(conn).deactivate(alert_id):
                raise NotFoundError("Rate alert", alert_id)
        logger.info("Deactivated rate alert %d", alert_id)

    def records_meeting_target(
        self,
        account_type: Union[AccountType, str],
        target_rate: float,
        limit: Optional[int] = None,
    ) -> list[RateRecord]:
        """Visible records whose effective yield is at least ``target_rate``."""
        account_type = _as_account_type(account_type)
        with self._connect() as conn:
            return RateRecordRepository(conn).meeting_target(
                account_type.value, target_rate, limit or self.config.alerts.max_matches
            )

    def send_alert(
        self,
        alert: RateAlert,
        records: list[RateRecord],
        now: Optional[datetime] = None,
    ) -> bool:
        """Notify the subscriber and stamp ``last_notified_at`` on success.

        Returns:
            ``True`` if the notification went out.
        """
        if alert.alert_id is None:
            raise ValueError("Cannot send an alert that has not been stored.")
        if not dispatch_safely(self.notifier.send_rate_alert, alert, records):
            return False
        with self._connect() as conn:
            RateAlertRepository(conn).mark_notified(alert.alert_id, now or utcnow())
        return True

    # ── Private helpers ───────────────────────────────────────────────────────

    def _connect(self) -> AbstractContextManager:
        return get_connection(
            self.db_path,
            wal_mode=self.config.database.wal_mode,
            busy_timeout_ms=self.config.database.busy_timeout_ms,
        )

    def _ledger(self, conn) -> VerificationLedger:
        return VerificationLedger(
            RateRecordRepository(conn),
            high_reports_threshold=self.config.ledger.high_reports_threshold,
        )


def _as_observation(observation: ObservationInput) -> Observation:
    if isinstance(observation, Observation):
        return observation
    return parse_observation(observation)


def _as_account_type(value: Union[AccountType, str]) -> AccountType:
    if isinstance(value, AccountType):
        return value
    try:
        return AccountType(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(m.value for m in AccountType)
        raise ValidationError(
            f"Unknown account_type '{value}'. Must be one of: {allowed}.",
            field="account_type",
        ) from None
