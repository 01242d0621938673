"""
Time helpers shared by the catalog, ranker and batch stages.

All timestamps in the catalog are timezone-aware UTC datetimes and are
stored in SQLite as ISO-8601 strings.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Return the current UTC datetime with timezone info.

    Prefer this over ``datetime.utcnow()`` (which returns naive datetimes).
    """
    return datetime.now(tz=timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime for storage, or ``None``."""
    return ensure_utc(value).isoformat() if value is not None else None


def from_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO-8601 string back into an aware UTC datetime."""
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def whole_days_between(earlier: datetime, later: datetime) -> int:
    """Return the number of whole days elapsed from ``earlier`` to ``later``.

    Partial days are floored, so 6 days 23 hours counts as 6.

    Args:
        earlier: Start timestamp.
        later: End timestamp.

    Returns:
        Floor of the elapsed time in days (negative if ``later`` precedes
        ``earlier``).
    """
    delta = ensure_utc(later) - ensure_utc(earlier)
    return delta.days


def hours_between(earlier: datetime, later: datetime) -> float:
    """Return elapsed hours from ``earlier`` to ``later`` as a float."""
    return (ensure_utc(later) - ensure_utc(earlier)).total_seconds() / 3600.0
