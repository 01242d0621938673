"""
Observation normalizer: raw observation → canonical ``CandidateRecord``.

Rules
-----
- ``apy`` defaults to ``rate``.
- ``rate`` is required; ``rate``, ``apy`` and ``min_deposit`` must be finite
  and >= 0.
- ``account_type`` and ``origin`` must be known vocabulary values.
- ``term`` is required (>= 1 month) for ``cd`` and rejected for every other
  account type.
- ``min_deposit`` defaults to 0 and ``features`` to the empty set.
- ``availability`` defaults to ``national``; a community observation that
  carries a location defaults to ``regional``. An explicit value wins.

Every failure raises ``rate_catalog.errors.ValidationError`` naming the
offending field.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Optional

import pydantic

from rate_catalog.errors import ValidationError
from rate_catalog.models.rate import CandidateRecord, Observation
from rate_catalog.taxonomy.rate_taxonomy import (
    AccountType,
    AvailabilityScope,
    SourceOrigin,
)

logger = logging.getLogger(__name__)


def parse_observation(raw: dict[str, Any]) -> Observation:
    """Build an ``Observation`` from a loosely-typed dict.

    Args:
        raw: Mapping as produced by a form, a JSON file, or an API client.

    Returns:
        The parsed ``Observation``.

    Raises:
        ValidationError: If a field has an unusable shape (e.g. a rate that
            is not a number).
    """
    try:
        return Observation.model_validate(raw)
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or None
        raise ValidationError(
            f"Invalid observation field '{field}': {first.get('msg')}", field=field
        ) from exc


def normalize_observation(observation: Observation) -> CandidateRecord:
    """Validate ``observation`` and fill in defaults.

    Args:
        observation: A raw observation from any source.

    Returns:
        The canonical ``CandidateRecord``.

    Raises:
        ValidationError: On any rule violation listed in the module docstring.
    """
    institution = observation.institution_name.strip()
    if not institution:
        raise ValidationError("institution_name must not be blank.", field="institution_name")

    account_type = _parse_enum(AccountType, observation.account_type, "account_type")
    origin = _parse_enum(SourceOrigin, observation.origin, "origin")

    if observation.rate is None:
        raise ValidationError("rate is required.", field="rate")
    _check_amount(observation.rate, "rate")

    apy = observation.apy if observation.apy is not None else observation.rate
    _check_amount(apy, "apy")

    min_deposit = observation.min_deposit if observation.min_deposit is not None else 0.0
    _check_amount(min_deposit, "min_deposit")

    term = _validate_term(account_type, observation.term)

    location = observation.location
    if location is not None and location.is_empty:
        location = None

    if observation.availability:
        availability = _parse_enum(
            AvailabilityScope, observation.availability, "availability"
        )
    elif origin is SourceOrigin.COMMUNITY and location is not None:
        availability = AvailabilityScope.REGIONAL
    else:
        availability = AvailabilityScope.NATIONAL

    return CandidateRecord(
        institution_name=institution,
        account_type=account_type,
        rate=observation.rate,
        apy=apy,
        min_deposit=min_deposit,
        term=term,
        features=_clean_features(observation.features),
        origin=origin,
        source_url=_blank_to_none(observation.source_url),
        notes=_blank_to_none(observation.notes),
        availability=availability,
        location=location,
        submitted_by=_blank_to_none(observation.submitted_by),
    )


# ── Private helpers ────────────────────────────────────────────────────────────

def _check_amount(value: float, field: str) -> None:
    if not math.isfinite(value):
        raise ValidationError(f"{field} must be a finite number, got {value}.", field=field)
    if value < 0:
        raise ValidationError(f"{field} must be >= 0, got {value}.", field=field)


def _parse_enum(enum_cls, value: Optional[str], field: str):
    normalized = (value or "").strip().lower()
    try:
        return enum_cls(normalized)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(
            f"Unknown {field} '{value}'. Must be one of: {allowed}.", field=field
        ) from None


def _validate_term(account_type: AccountType, term: Optional[int]) -> Optional[int]:
    if account_type is AccountType.CD:
        if term is None:
            raise ValidationError("term (months) is required for cd accounts.", field="term")
        if term < 1:
            raise ValidationError(f"term must be >= 1 month, got {term}.", field="term")
        return term
    if term is not None:
        raise ValidationError(
            f"term is only valid for cd accounts, not '{account_type}'.", field="term"
        )
    return None


def _clean_features(features: Optional[list[str]]) -> frozenset[str]:
    if not features:
        return frozenset()
    return frozenset(f.strip() for f in features if f and f.strip())


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None
