"""
Rate alert model.

A rate alert asks to be told when any visible record of an account type
reaches a target effective yield. At most one *active* alert exists per
``(email, account_type)``; creating another replaces its target and cadence.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from rate_catalog.taxonomy.rate_taxonomy import AccountType, AlertFrequency

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

MAX_TARGET_RATE = 20.0


class RateAlert(BaseModel):
    """A subscriber's yield target for one account type.

    Attributes:
        alert_id: Auto-assigned DB PK; ``None`` before insertion.
        email: Lower-cased subscriber address.
        account_type: Account type the alert watches.
        target_rate: Minimum effective yield (percent) that triggers a match.
        frequency: Notification cadence.
        active: ``False`` once the subscriber deletes the alert.
        last_notified_at: When the last notification was sent.
        created_at: Insert timestamp.
    """

    model_config = ConfigDict(frozen=True)

    alert_id: Optional[int] = None
    email: str
    account_type: AccountType
    target_rate: float
    frequency: AlertFrequency = AlertFrequency.DAILY
    active: bool = True
    last_notified_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip().lower()
        if not _EMAIL_RE.match(v):
            raise ValueError(f"Invalid email format: '{v}'.")
        return v

    @field_validator("target_rate")
    @classmethod
    def validate_target_rate(cls, v: float) -> float:
        if not 0.0 <= v <= MAX_TARGET_RATE:
            raise ValueError(
                f"target_rate must be between 0 and {MAX_TARGET_RATE:g}, got {v}."
            )
        return v
