"""
Recommendation request and result models.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from rate_catalog.models.rate import RateRecord
from rate_catalog.taxonomy.rate_taxonomy import AccountType


class Preferences(BaseModel):
    """What a user is looking for.

    Attributes:
        account_type: Account type to rank.
        min_rate: Candidate filter; records below this yield are not ranked.
        max_min_deposit: Deposit cap; advisory at ranking time (scored, not excluded).
        preferred_features: Feature labels the user wants, in display order.
        location: Free-text location, forwarded to the AI ranker only.
    """

    model_config = ConfigDict(frozen=True)

    account_type: AccountType
    min_rate: Optional[float] = None
    max_min_deposit: Optional[float] = None
    preferred_features: tuple[str, ...] = ()
    location: Optional[str] = None

    @field_validator("preferred_features", mode="before")
    @classmethod
    def dedupe_features(cls, v):
        if v is None:
            return ()
        seen: dict[str, None] = {}
        for feature in v:
            label = str(feature).strip()
            if label:
                seen.setdefault(label, None)
        return tuple(seen)


class Recommendation(BaseModel):
    """One ranked recommendation.

    Attributes:
        record: The recommended catalog record.
        score: Match score in [0, 100].
        reasoning: One-sentence human-readable explanation.
        ranked_by: ``"rules"`` for the local scorer, ``"ai"`` for the AI ranker.
    """

    model_config = ConfigDict(frozen=True)

    record: RateRecord
    score: float
    reasoning: str
    ranked_by: Literal["rules", "ai"] = "rules"
