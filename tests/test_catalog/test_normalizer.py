"""
Tests for the observation normalizer.

What we test
------------
normalize_observation():
  - apy defaults to rate; min_deposit to 0; features to the empty set.
  - Unknown account type / origin / availability are rejected naming the field.
  - Missing or negative rate, negative apy and negative min_deposit are rejected.
  - NaN and infinite amounts are rejected.
  - CD requires a term >= 1; every other type rejects a term.
  - Community observations with a location default to regional availability;
    an explicit availability always wins.
  - Enum strings are accepted case-insensitively.

parse_observation():
  - Builds an Observation from a dict.
  - A non-numeric rate raises ValidationError (not pydantic's).
"""

from __future__ import annotations

import pytest

from rate_catalog.catalog.normalizer import normalize_observation, parse_observation
from rate_catalog.errors import ValidationError
from rate_catalog.models.rate import Location, Observation
from rate_catalog.taxonomy.rate_taxonomy import (
    AccountType,
    AvailabilityScope,
    SourceOrigin,
)


def _obs(**overrides) -> Observation:
    values = {
        "institution_name": "Ally Bank",
        "account_type": "savings",
        "rate": 4.25,
        "origin": "community",
    }
    values.update(overrides)
    return Observation(**values)


class TestDefaults:
    def test_apy_defaults_to_rate(self):
        candidate = normalize_observation(_obs(apy=None))
        assert candidate.apy == pytest.approx(4.25)

    def test_explicit_apy_kept(self):
        candidate = normalize_observation(_obs(apy=4.35))
        assert candidate.apy == pytest.approx(4.35)

    def test_min_deposit_defaults_to_zero(self):
        assert normalize_observation(_obs()).min_deposit == 0.0

    def test_features_default_to_empty_set(self):
        assert normalize_observation(_obs()).features == frozenset()

    def test_features_are_stripped_and_deduplicated(self):
        candidate = normalize_observation(
            _obs(features=[" No Monthly Fee", "No Monthly Fee", "", "  "])
        )
        assert candidate.features == frozenset({"No Monthly Fee"})

    def test_enums_resolved(self):
        candidate = normalize_observation(_obs(account_type="Money-Market", origin="SCRAPED"))
        assert candidate.account_type is AccountType.MONEY_MARKET
        assert candidate.origin is SourceOrigin.SCRAPED

    def test_institution_name_trimmed(self):
        assert normalize_observation(_obs(institution_name="  Ally Bank ")).institution_name == "Ally Bank"

    def test_blank_notes_become_none(self):
        assert normalize_observation(_obs(notes="   ")).notes is None


class TestRejections:
    @pytest.mark.parametrize(
        "overrides, field",
        [
            ({"account_type": "brokerage"}, "account_type"),
            ({"origin": "rumour"}, "origin"),
            ({"rate": None}, "rate"),
            ({"rate": -0.5}, "rate"),
            ({"apy": -1.0}, "apy"),
            ({"min_deposit": -10}, "min_deposit"),
            ({"institution_name": "   "}, "institution_name"),
            ({"availability": "galactic"}, "availability"),
            ({"rate": float("nan")}, "rate"),
            ({"rate": float("inf")}, "rate"),
            ({"apy": float("nan")}, "apy"),
            ({"apy": float("-inf")}, "apy"),
            ({"min_deposit": float("inf")}, "min_deposit"),
        ],
    )
    def test_invalid_field_named(self, overrides, field):
        with pytest.raises(ValidationError) as exc_info:
            normalize_observation(_obs(**overrides))
        assert exc_info.value.field == field

    def test_zero_rate_is_allowed(self):
        assert normalize_observation(_obs(rate=0.0)).rate == 0.0


class TestCdTerm:
    def test_cd_without_term_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            normalize_observation(_obs(account_type="cd"))
        assert exc_info.value.field == "term"

    def test_cd_with_zero_term_rejected(self):
        with pytest.raises(ValidationError):
            normalize_observation(_obs(account_type="cd", term=0))

    def test_cd_term_kept(self):
        assert normalize_observation(_obs(account_type="cd", term=12)).term == 12

    def test_term_on_savings_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            normalize_observation(_obs(term=12))
        assert exc_info.value.field == "term"


class TestAvailability:
    def test_defaults_to_national(self):
        assert normalize_observation(_obs()).availability is AvailabilityScope.NATIONAL

    def test_community_with_location_is_regional(self):
        candidate = normalize_observation(_obs(location=Location(state="oh", city="Columbus")))
        assert candidate.availability is AvailabilityScope.REGIONAL
        assert candidate.location is not None
        assert candidate.location.state == "OH"

    def test_scraped_with_location_stays_national(self):
        candidate = normalize_observation(
            _obs(origin="scraped", location=Location(state="OH"))
        )
        assert candidate.availability is AvailabilityScope.NATIONAL

    def test_explicit_availability_wins(self):
        candidate = normalize_observation(
            _obs(location=Location(zip_code="43215"), availability="local")
        )
        assert candidate.availability is AvailabilityScope.LOCAL

    def test_empty_location_dropped(self):
        candidate = normalize_observation(_obs(location=Location(city="  ")))
        assert candidate.location is None
        assert candidate.availability is AvailabilityScope.NATIONAL


class TestParseObservation:
    def test_from_dict(self):
        obs = parse_observation(
            {"institution_name": "Marcus", "account_type": "savings", "rate": "4.1"}
        )
        assert obs.rate == pytest.approx(4.1)
        assert obs.origin == "community"

    def test_non_numeric_rate_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_observation(
                {"institution_name": "Marcus", "account_type": "savings", "rate": "lots"}
            )
        assert exc_info.value.field == "rate"

    def test_missing_institution_rejected(self):
        with pytest.raises(ValidationError):
            parse_observation({"account_type": "savings", "rate": 4.0})
