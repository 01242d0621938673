"""
Outbound notifications: admin notices and subscriber rate alerts.

Notifications are fire-and-forget. Callers go through ``dispatch_safely()``,
which logs and swallows ``NotificationFailure`` so a failed email never
rolls back or blocks the catalog change that triggered it.

Implementations
---------------
LoggingNotifier  - writes each notification to the log. Default when SMTP
                   credentials are not configured.
SmtpNotifier     - plain-text email over SMTP with STARTTLS.
"""

from __future__ import annotations

import logging
import os
import smtplib
from collections.abc import Callable
from email.message import EmailMessage
from typing import Any, Optional, Protocol

from rate_catalog.config import AppConfig, NotifyConfig
from rate_catalog.errors import NotificationFailure
from rate_catalog.models.alert import RateAlert
from rate_catalog.models.rate import RateRecord

logger = logging.getLogger(__name__)

_ACCOUNT_LABELS: dict[str, str] = {
    "savings": "Savings",
    "cd": "Certificate of Deposit (CD)",
    "checking": "Checking",
    "money-market": "Money Market",
}


class Notifier(Protocol):
    def on_submission(self, record: RateRecord) -> None: ...

    def on_report(self, record: RateRecord, reason: str) -> None: ...

    def send_rate_alert(self, alert: RateAlert, records: list[RateRecord]) -> None: ...


def dispatch_safely(fn: Callable[..., Any], *args: Any) -> bool:
    """Call a notifier method, logging and swallowing any failure.

    Returns:
        ``True`` if the notification was handed off without error.
    """
    try:
        fn(*args)
        return True
    except NotificationFailure as exc:
        logger.error("Notification failed (%s): %s", getattr(fn, "__name__", fn), exc)
    except Exception as exc:
        logger.exception(
            "Unexpected notifier error (%s): %s", getattr(fn, "__name__", fn), exc
        )
    return False


class LoggingNotifier:
    """Notifier that only logs. Used when no mail transport is configured."""

    def on_submission(self, record: RateRecord) -> None:
        logger.info(
            "New community rate #%d: %s %s %.2f%% APY",
            record.record_id, record.institution_name, record.account_type,
            record.effective_yield,
        )

    def on_report(self, record: RateRecord, reason: str) -> None:
        logger.info(
            "Rate #%d reported (%s %s): %s",
            record.record_id, record.institution_name, record.account_type, reason,
        )

    def send_rate_alert(self, alert: RateAlert, records: list[RateRecord]) -> None:
        logger.info(
            "Rate alert for %s: %d %s rate(s) at or above %.2f%%",
            alert.email, len(records), alert.account_type, alert.target_rate,
        )


class SmtpNotifier:
    """Sends plain-text email through an SMTP relay.

    Args:
        config: SMTP host/port, admin address and public app URL.
        username: SMTP login (``SMTP_USER``).
        password: SMTP password (``SMTP_PASS``).
        smtp_factory: Callable returning an ``smtplib.SMTP``-like object;
            injectable for tests.
    """

    def __init__(
        self,
        config: NotifyConfig,
        username: str,
        password: str,
        smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
    ) -> None:
        self.config = config
        self.username = username
        self.password = password
        self._smtp_factory = smtp_factory

    def on_submission(self, record: RateRecord) -> None:
        if not self.config.admin_email:
            logger.debug("No admin_email configured; skipping submission notice.")
            return
        body = "\n".join([
            "A new community rate was submitted.",
            "",
            *_record_lines(record),
            f"Verifications: {record.verification_count}  Reports: {record.report_count}",
            f"Notes: {record.notes or '-'}",
        ])
        self._send(
            self.config.admin_email,
            f"New rate submission: {record.institution_name}",
            body,
        )

    def on_report(self, record: RateRecord, reason: str) -> None:
        if not self.config.admin_email:
            logger.debug("No admin_email configured; skipping report notice.")
            return
        body = "\n".join([
            "A rate was reported by the community.",
            "",
            *_record_lines(record),
            f"Reason: {reason}",
            f"Verifications: {record.verification_count}  Reports: {record.report_count}",
        ])
        self._send(
            self.config.admin_email,
            f"Rate reported: {record.institution_name}",
            body,
        )

    def send_rate_alert(self, alert: RateAlert, records: list[RateRecord]) -> None:
        label = _ACCOUNT_LABELS.get(alert.account_type.value, alert.account_type.value)
        lines = [
            f"Good news! {len(records)} {label} rate(s) now meet your "
            f"{alert.target_rate:.2f}% target.",
            "",
        ]
        for record in records:
            lines.append(f"  {record.institution_name:<30} {record.effective_yield:>6.2f}% APY")
            if record.source_url:
                lines.append(f"    {record.source_url}")
        lines += ["", f"Manage your alerts at {self.config.app_url}"]
        self._send(
            alert.email,
            f"Rate alert: {label} rates at {alert.target_rate:.2f}%+",
            "\n".join(lines),
        )

    def _send(self, to: str, subject: str, body: str) -> None:
        msg = EmailMessage()
        msg["From"] = self.username
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)
        try:
            with self._smtp_factory(self.config.smtp_host, self.config.smtp_port, timeout=30) as smtp:
                smtp.starttls()
                smtp.login(self.username, self.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationFailure(f"SMTP delivery to {to} failed: {exc}") from exc
        logger.info("Email sent | to=%s subject=%r", to, subject)


def build_notifier(config: AppConfig) -> Notifier:
    """Return an ``SmtpNotifier`` when SMTP credentials are set, else logging."""
    username: Optional[str] = os.environ.get("SMTP_USER")
    password: Optional[str] = os.environ.get("SMTP_PASS")
    if username and password:
        return SmtpNotifier(config.notify, username, password)
    logger.debug("SMTP_USER/SMTP_PASS not set; notifications will be logged only.")
    return LoggingNotifier()


# ── Private helpers ────────────────────────────────────────────────────────────

def _record_lines(record: RateRecord) -> list[str]:
    return [
        f"Institution: {record.institution_name}",
        f"Account type: {record.account_type}",
        f"Rate: {record.rate:.2f}%  APY: {record.effective_yield:.2f}%",
        f"Min deposit: ${record.min_deposit:,.2f}",
        f"Record id: {record.record_id}",
    ]
