"""
AlertCheckStage - notify subscribers whose rate targets are met.

For each active alert:
  1. Skip if notified less than ``frequency.min_hours_between`` hours ago
     (0 for instant, 24 for daily, 168 for weekly).
  2. Look up visible records of the alert's account type whose effective
     yield is at least the target (``[alerts].max_matches`` at most).
  3. If any, send them through the notifier and stamp ``last_notified_at``.

A failed notification leaves ``last_notified_at`` untouched, so the alert
is retried on the next sweep. Returns the number of alerts notified.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from rate_catalog.config import AppConfig
from rate_catalog.errors import CatalogError
from rate_catalog.models.alert import RateAlert
from rate_catalog.models.meta import RunMetadata
from rate_catalog.notify.notifier import Notifier
from rate_catalog.pipeline.base import PipelineStage
from rate_catalog.utils.time_utils import hours_between, utcnow

logger = logging.getLogger(__name__)


def is_alert_due(alert: RateAlert, now: datetime) -> bool:
    """Whether enough time has passed since the alert last fired."""
    if alert.last_notified_at is None:
        return True
    return hours_between(alert.last_notified_at, now) >= alert.frequency.min_hours_between


class AlertCheckStage(PipelineStage):
    """Sweep active alerts and notify the ones whose targets are met."""

    stage_name = "alert_check"

    def __init__(
        self,
        config: AppConfig,
        db_path: str | None = None,
        notifier: Optional[Notifier] = None,
    ) -> None:
        super().__init__(config, db_path)
        self._notifier = notifier

    def _execute(
        self,
        run: RunMetadata,
        now: Optional[datetime] = None,
        **kwargs,
    ) -> int:
        from rate_catalog.catalog.service import CatalogService
        from rate_catalog.notify.notifier import build_notifier

        now = now or utcnow()
        service = CatalogService(
            self.config,
            db_path=self.db_path,
            notifier=self._notifier or build_notifier(self.config),
        )

        alerts = service.active_alerts()
        notified = not_due = no_match = 0
        for alert in alerts:
            if not is_alert_due(alert, now):
                not_due += 1
                continue
            try:
                matches = service.records_meeting_target(alert.account_type, alert.target_rate)
                if not matches:
                    no_match += 1
                    continue
                if service.send_alert(alert, matches, now):
                    notified += 1
            except CatalogError as exc:
                logger.warning("Alert %s check failed: %s", alert.alert_id, exc)

        logger.info(
            "Alert check | active=%d notified=%d not_due=%d no_match=%d",
            len(alerts), notified, not_due, no_match,
        )
        return notified
