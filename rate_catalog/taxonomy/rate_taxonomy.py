"""
Rate catalog taxonomy.

Closed vocabularies shared by models, repositories and the merge engine:
  - ``AccountType``       - what kind of deposit account a rate applies to.
  - ``SourceOrigin``      - provenance of an observation / record.
  - ``AvailabilityScope`` - where the product can be opened.
  - ``RefreshPolicy``     - what a sourced merge does to trust counters.
  - ``AlertFrequency``    - how often a rate alert may notify.

This module has NO imports from any other ``rate_catalog`` package.
"""

from enum import StrEnum


class AccountType(StrEnum):
    """Deposit account type."""

    CHECKING = "checking"
    SAVINGS = "savings"
    CD = "cd"
    """Certificate of deposit; the only type that carries a term in months."""

    MONEY_MARKET = "money-market"


class SourceOrigin(StrEnum):
    """Provenance tag of an observation or record."""

    COMMUNITY = "community"
    """Submitted by a user; each submission becomes its own record."""

    SCRAPED = "scraped"
    """Produced by the scheduled scraper sweep."""

    API = "api"
    """Produced by an AI-driven web search."""

    @property
    def is_authoritative(self) -> bool:
        """True for origins that converge to one record per institution+type."""
        return self is not SourceOrigin.COMMUNITY


class AvailabilityScope(StrEnum):
    """Geographic availability of a product."""

    NATIONAL = "national"
    REGIONAL = "regional"
    LOCAL = "local"


class RefreshPolicy(StrEnum):
    """Trust-counter policy applied when a sourced observation updates a record."""

    PRESERVE_TRUST = "preserve-trust"
    """Targeted updates: historical verification/report counts carry forward."""

    RESET_TRUST = "reset-trust"
    """Nightly full refresh: both counters are reset to zero."""


class AlertFrequency(StrEnum):
    """Notification cadence for a rate alert."""

    INSTANT = "instant"
    DAILY = "daily"
    WEEKLY = "weekly"

    @property
    def min_hours_between(self) -> float:
        """Minimum hours between two notifications for this cadence."""
        return {
            AlertFrequency.INSTANT: 0.0,
            AlertFrequency.DAILY: 24.0,
            AlertFrequency.WEEKLY: 168.0,
        }[self]
