"""
Rule-based match scoring: converts a RateRecord + Preferences into a
0–100 score with a component breakdown and a one-sentence reasoning.

Score formula (additive, clamped to [0, 100])
---------------------------------------------
    total = clamp(
        50                      # base
        + yield_points          # 10–30 by effective-yield tier
        + verification_points   # 5–20 by verification count
        + deposit_points        # +15 / +10 / −10, only with a deposit cap
        + feature_points        # 20 × matched / preferred, only with features
        + freshness_points      # 15 / 10 / 5 / 0 by days since verification
        - report_penalty        # 5 per report, unbounded
    )

Tier tables
-----------
    effective yield  >= 5.0 → 30,  >= 4.0 → 25,  >= 3.0 → 20,  >= 2.0 → 15,  else 10
    verifications    >= 10  → 20,  >= 5   → 15,  >= 2   → 10,  else 5
    freshness (days) <= 7   → 15,  <= 30  → 10,  <= 90  → 5,   else 0
                     (never verified → 0)

The deposit cap is advisory: a record above the cap loses 10 points but is
still ranked.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from rate_catalog.models.rate import RateRecord
from rate_catalog.models.recommendation import Preferences
from rate_catalog.utils.time_utils import whole_days_between

BASE_SCORE = 50.0

# (threshold, points); first threshold met wins
_YIELD_TIERS: list[tuple[float, float]] = [
    (5.0, 30.0),
    (4.0, 25.0),
    (3.0, 20.0),
    (2.0, 15.0),
]
_YIELD_FLOOR = 10.0

_VERIFICATION_TIERS: list[tuple[int, float]] = [
    (10, 20.0),
    (5,  15.0),
    (2,  10.0),
]
_VERIFICATION_FLOOR = 5.0

_FRESHNESS_TIERS: list[tuple[int, float]] = [
    (7,  15.0),
    (30, 10.0),
    (90,  5.0),
]

REPORT_PENALTY_PER_REPORT = 5.0


@dataclass
class ScoreComponents:
    """All components of a match score.

    Attributes:
        yield_points:         10–30 from the effective-yield tier.
        verification_points:  5–20 from the verification tier.
        deposit_points:       +15 / +10 / −10, or 0 without a deposit cap.
        feature_points:       0–20 from preferred-feature overlap.
        freshness_points:     0–15 from days since last verification.
        report_penalty:       5 × report_count (subtracted).
        matched_features:     Preferred features the record offers, in
                              preference order.
    """

    yield_points:        float
    verification_points: float
    deposit_points:      float
    feature_points:      float
    freshness_points:    float
    report_penalty:      float
    matched_features:    tuple[str, ...] = ()

    @property
    def raw(self) -> float:
        """Unclamped additive score."""
        return (
            BASE_SCORE
            + self.yield_points
            + self.verification_points
            + self.deposit_points
            + self.feature_points
            + self.freshness_points
            - self.report_penalty
        )

    @property
    def total(self) -> float:
        """Score clamped to [0, 100]."""
        return _clamp(self.raw, 0.0, 100.0)


def compute_match_score(
    record: RateRecord,
    preferences: Preferences,
    now: datetime,
) -> ScoreComponents:
    """Compute all score components for one candidate record.

    Args:
        record:      Candidate catalog record.
        preferences: The user's preferences.
        now:         Reference time for freshness.

    Returns:
        ScoreComponents with every field populated.
    """
    # ── Yield ─────────────────────────────────────────────────────────────────
    effective = record.effective_yield
    yield_points = next(
        (pts for threshold, pts in _YIELD_TIERS if effective >= threshold),
        _YIELD_FLOOR,
    )

    # ── Verification ──────────────────────────────────────────────────────────
    verification_points = next(
        (pts for threshold, pts in _VERIFICATION_TIERS
         if record.verification_count >= threshold),
        _VERIFICATION_FLOOR,
    )

    # ── Deposit fit ───────────────────────────────────────────────────────────
    deposit_points = 0.0
    if preferences.max_min_deposit is not None:
        if not record.min_deposit:
            deposit_points = 15.0
        elif record.min_deposit <= preferences.max_min_deposit:
            deposit_points = 10.0
        else:
            deposit_points = -10.0

    # ── Feature overlap ───────────────────────────────────────────────────────
    matched = matched_features(record, preferences)
    feature_points = 0.0
    if preferences.preferred_features:
        feature_points = 20.0 * len(matched) / len(preferences.preferred_features)

    # ── Freshness ─────────────────────────────────────────────────────────────
    freshness_points = 0.0
    if record.last_verified_at is not None:
        days = whole_days_between(record.last_verified_at, now)
        freshness_points = next(
            (pts for limit, pts in _FRESHNESS_TIERS if days <= limit), 0.0
        )

    return ScoreComponents(
        yield_points=yield_points,
        verification_points=verification_points,
        deposit_points=deposit_points,
        feature_points=round(feature_points, 4),
        freshness_points=freshness_points,
        report_penalty=REPORT_PENALTY_PER_REPORT * record.report_count,
        matched_features=matched,
    )


def matched_features(record: RateRecord, preferences: Preferences) -> tuple[str, ...]:
    """Preferred features offered by ``record``, in preference order."""
    return tuple(f for f in preferences.preferred_features if f in record.features)


def build_reasoning(record: RateRecord, preferences: Preferences) -> str:
    """Assemble the one-sentence explanation for a recommendation.

    Parts, in fixed order and joined by ", ":
      1. yield wording ("Excellent" >= 4.5, "Competitive" >= 3.5)
      2. "highly verified by community (N verifications)" when N >= 5
      3. deposit wording (none required / affordable within the cap)
      4. "includes <matched features>"

    Example:
        "Excellent 4.60% APY, highly verified by community (12 verifications),
        no minimum deposit required."
    """
    parts: list[str] = []

    effective = record.effective_yield
    if effective >= 4.5:
        parts.append(f"Excellent {effective:.2f}% APY")
    elif effective >= 3.5:
        parts.append(f"Competitive {effective:.2f}% APY")
    else:
        parts.append(f"{effective:.2f}% APY")

    if record.verification_count >= 5:
        parts.append(
            f"highly verified by community ({record.verification_count} verifications)"
        )

    if not record.min_deposit:
        parts.append("no minimum deposit required")
    elif (
        preferences.max_min_deposit is not None
        and record.min_deposit <= preferences.max_min_deposit
    ):
        parts.append(f"affordable ${_format_amount(record.min_deposit)} minimum deposit")

    matched = matched_features(record, preferences)
    if matched:
        parts.append(f"includes {', '.join(matched)}")

    return ", ".join(parts) + "."


# ── Helper ────────────────────────────────────────────────────────────────────

def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def _format_amount(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:.2f}"
