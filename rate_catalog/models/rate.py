"""
Rate models - raw observations, normalized candidates, and catalog records.

Three-stage design:
  1. ``Observation``      - a transient data point exactly as a collaborator
                            produced it (community form, scraper, AI search).
                            Leniently typed; never persisted as-is.
  2. ``CandidateRecord``  - the normalizer's output: enums resolved, defaults
                            applied, effective yield filled in.
  3. ``RateRecord``       - a persisted catalog entry with its surrogate id,
                            trust counters and timestamps.

All three are frozen. Counter changes happen in the store; callers re-read
the record rather than mutating a model.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from rate_catalog.taxonomy.rate_taxonomy import (
    AccountType,
    AvailabilityScope,
    SourceOrigin,
)


class Location(BaseModel):
    """Where a product is offered. Any subset of the fields may be set."""

    model_config = ConfigDict(frozen=True)

    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    region: Optional[str] = None

    @field_validator("state")
    @classmethod
    def normalize_state(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v and v.strip() else None

    @field_validator("city", "zip_code", "region")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v and v.strip() else None

    @property
    def is_empty(self) -> bool:
        return not any((self.city, self.state, self.zip_code, self.region))


class Observation(BaseModel):
    """A single raw rate data point from any source.

    Only loose shape checks happen here (numbers are numbers). Semantic
    validation (known account type, non-negative rate, CD term rules)
    is the job of :func:`rate_catalog.catalog.normalizer.normalize_observation`.

    Attributes:
        institution_name: Bank or credit union name as reported.
        account_type: Account type string, e.g. ``"savings"``.
        rate: Nominal rate in percent; required by the normalizer.
        apy: Effective annual yield in percent; defaults to ``rate``.
        min_deposit: Minimum opening deposit in currency units.
        term: CD term in months.
        features: Short feature labels, e.g. ``"No Monthly Fee"``.
        origin: ``"community"``, ``"scraped"`` or ``"api"``.
        source_url: Page the rate was taken from.
        notes: Free-text notes from the submitter.
        location: Optional location; makes a community record regional.
        availability: Explicit availability scope, overriding the default.
        submitted_by: Optional submitter handle for community entries.
    """

    model_config = ConfigDict(frozen=True)

    institution_name: str
    account_type: str
    rate: Optional[float] = None
    apy: Optional[float] = None
    min_deposit: Optional[float] = None
    term: Optional[int] = None
    features: Optional[list[str]] = None
    origin: str = SourceOrigin.COMMUNITY.value
    source_url: Optional[str] = None
    notes: Optional[str] = None
    location: Optional[Location] = None
    availability: Optional[str] = None
    submitted_by: Optional[str] = None


class CandidateRecord(BaseModel):
    """Canonical, defaulted record shape produced by the normalizer."""

    model_config = ConfigDict(frozen=True)

    institution_name: str
    account_type: AccountType
    rate: float
    apy: float
    min_deposit: float = 0.0
    term: Optional[int] = None
    features: frozenset[str] = frozenset()
    origin: SourceOrigin
    source_url: Optional[str] = None
    notes: Optional[str] = None
    availability: AvailabilityScope = AvailabilityScope.NATIONAL
    location: Optional[Location] = None
    submitted_by: Optional[str] = None


class RateRecord(BaseModel):
    """A persisted catalog entry.

    Attributes:
        record_id: Surrogate id assigned at insert; never reused.
        institution_name: Natural-key part 1.
        account_type: Natural-key part 2.
        rate: Nominal rate (percent, >= 0).
        apy: Effective annual yield (percent, >= 0).
        min_deposit: Minimum deposit (>= 0).
        term: CD term in months; ``None`` for non-CD types.
        features: Order-irrelevant feature labels.
        source_origin: Provenance of the current values.
        source_url: Page the current values came from.
        availability: National / regional / local.
        location: Optional location details.
        notes: Free text; auto-flag reasons are prepended here.
        submitted_by: Submitter handle (community only).
        verification_count: Community verifications (>= 0).
        report_count: Community reports (>= 0).
        last_verified_at: Last verification; ``None`` means never verified.
        last_scraped_at: Last sourced refresh of the values.
        created_at: Insert timestamp.
        updated_at: Last modification timestamp.
    """

    model_config = ConfigDict(frozen=True)

    record_id: int
    institution_name: str
    account_type: AccountType
    rate: float
    apy: Optional[float] = None
    min_deposit: float = 0.0
    term: Optional[int] = None
    features: frozenset[str] = frozenset()
    source_origin: SourceOrigin
    source_url: Optional[str] = None
    availability: AvailabilityScope = AvailabilityScope.NATIONAL
    location: Optional[Location] = None
    notes: Optional[str] = None
    submitted_by: Optional[str] = None
    verification_count: int = 0
    report_count: int = 0
    last_verified_at: Optional[datetime] = None
    last_scraped_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @field_validator("rate", "min_deposit")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Rates and deposits must be non-negative.")
        return v

    @field_validator("verification_count", "report_count")
    @classmethod
    def validate_counts_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Verification and report counts must be non-negative.")
        return v

    @property
    def effective_yield(self) -> float:
        """APY, falling back to the nominal rate when APY is absent."""
        return self.apy if self.apy is not None else self.rate

    @property
    def is_visible(self) -> bool:
        """Whether the record appears in default public listings."""
        return self.report_count <= self.verification_count


class CounterSnapshot(BaseModel):
    """Trust counters returned by ``verify`` / ``report``."""

    model_config = ConfigDict(frozen=True)

    record_id: int
    verification_count: int
    report_count: int
    last_verified_at: Optional[datetime] = None

    @property
    def is_visible(self) -> bool:
        return self.report_count <= self.verification_count


class RateFilter(BaseModel):
    """Public listing filter.

    Every given criterion narrows the result. ``state`` and ``zip_code``
    keep national records plus records whose location matches either one.
    """

    model_config = ConfigDict(frozen=True)

    account_type: Optional[AccountType] = None
    origin: Optional[SourceOrigin] = None
    min_rate: Optional[float] = None
    max_min_deposit: Optional[float] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    limit: int = 100

    @field_validator("state")
    @classmethod
    def normalize_state(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v and v.strip() else None

    @field_validator("limit")
    @classmethod
    def validate_limit(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"limit must be >= 1, got {v}.")
        return v
