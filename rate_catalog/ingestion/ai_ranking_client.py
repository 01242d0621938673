"""
AI ranking client - asks an OpenAI-compatible chat-completions API to pick
and explain the best candidates for a user's preferences.

Credential placement (.env, gitignored):
  OPENAI_API_KEY  - required; ``build_ai_ranker()`` returns ``None`` without
                    it and the rule-based ranker is used alone.

Every failure mode (network, HTTP status, non-JSON answer, unknown ids, an
empty list) raises ``UpstreamUnavailable`` so the caller can fall back.
"""

from __future__ import annotations

import json
import logging
import os
from typing import TYPE_CHECKING, Optional

from rate_catalog.config import AppConfig
from rate_catalog.errors import UpstreamUnavailable
from rate_catalog.ingestion.ai_search_client import message_text
from rate_catalog.models.rate import RateRecord
from rate_catalog.models.recommendation import Preferences, Recommendation

if TYPE_CHECKING:
    import httpx

logger = logging.getLogger(__name__)

_PLACEHOLDER_KEYS = frozenset({"", "your_openai_api_key_here"})

_SYSTEM_PROMPT = "You are a helpful banking advisor. Respond only with valid JSON."


class AIRankingClient:
    """LLM-backed implementation of the ``Ranker`` protocol."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-3.5-turbo",
        timeout_seconds: float = 30.0,
        http_client: Optional["httpx.Client"] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout_seconds = timeout_seconds
        self._http_client = http_client

    def rank(
        self,
        records: list[RateRecord],
        preferences: Preferences,
        top_n: int = 5,
    ) -> list[Recommendation]:
        """Return up to ``top_n`` AI-ranked recommendations, in model order.

        Raises:
            UpstreamUnavailable: On any transport or output problem.
        """
        import httpx

        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(records, preferences, top_n)},
            ],
            "temperature": 0.7,
            "max_tokens": 1000,
        }
        client = self._http_client or httpx.Client(timeout=self.timeout_seconds)
        try:
            resp = client.post(
                f"{self.base_url}/chat/completions",
                json=body,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamUnavailable(f"AI ranking request failed: {exc}") from exc
        finally:
            if self._http_client is None:
                client.close()

        return parse_rankings(message_text(data), records)[:top_n]


def build_prompt(records: list[RateRecord], preferences: Preferences, top_n: int) -> str:
    """Render the ranking prompt for ``records`` and ``preferences``."""
    rates_data = [
        {
            "id": str(r.record_id),
            "bank": r.institution_name,
            "rate": r.effective_yield,
            "minDeposit": r.min_deposit,
            "features": sorted(r.features),
            "verifications": r.verification_count,
            "term": r.term,
        }
        for r in records
    ]
    features = ", ".join(preferences.preferred_features) or "None specified"
    min_rate = f"{preferences.min_rate}%" if preferences.min_rate is not None else "No preference"
    max_dep = (
        f"${preferences.max_min_deposit:g}"
        if preferences.max_min_deposit is not None
        else "No limit"
    )
    return f"""You are a banking expert helping users find the best bank accounts.

User Preferences:
- Account Type: {preferences.account_type.value}
- Minimum Rate: {min_rate}
- Max Minimum Deposit: {max_dep}
- Preferred Features: {features}
- Location: {preferences.location or "Not specified"}

Available Rates:
{json.dumps(rates_data, indent=2)}

Return the top {top_n} recommendations as a JSON array. Each element must have:
- id: the rate id
- score: 0-100, how well it matches the user's needs
- reasoning: a brief, friendly explanation (1-2 sentences)

Consider rate competitiveness, minimum deposit fit, feature alignment,
community verification count and overall value.

Return ONLY a valid JSON array, no other text."""


def parse_rankings(text: str, records: list[RateRecord]) -> list[Recommendation]:
    """Map the model's JSON array back onto candidate records.

    Entries whose id is not among ``records`` are dropped.

    Raises:
        UpstreamUnavailable: If the text is not a JSON array or no entry
            maps to a candidate.
    """
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`")
        cleaned = cleaned[cleaned.find("["):] if "[" in cleaned else cleaned
    try:
        raw = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise UpstreamUnavailable(f"AI ranking output is not JSON: {exc}") from exc
    if not isinstance(raw, list):
        raise UpstreamUnavailable("AI ranking output is not a JSON array.")

    by_id = {str(r.record_id): r for r in records}
    recommendations: list[Recommendation] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        record = by_id.get(str(entry.get("id")))
        if record is None:
            logger.debug("AI ranking referenced unknown id %r", entry.get("id"))
            continue
        try:
            score = max(0.0, min(100.0, float(entry.get("score", 0))))
        except (TypeError, ValueError):
            continue
        recommendations.append(
            Recommendation(
                record=record,
                score=round(score, 2),
                reasoning=str(entry.get("reasoning") or "").strip() or "Recommended by AI ranking.",
                ranked_by="ai",
            )
        )

    if not recommendations:
        raise UpstreamUnavailable("AI ranking returned no usable recommendations.")
    return recommendations


def build_ai_ranker(
    config: AppConfig, http_client: Optional["httpx.Client"] = None
) -> Optional[AIRankingClient]:
    """Return a configured client, or ``None`` when ``OPENAI_API_KEY`` is unset."""
    api_key = os.environ.get("OPENAI_API_KEY", "")
    if api_key in _PLACEHOLDER_KEYS:
        return None
    return AIRankingClient(
        api_key=api_key,
        base_url=config.ai.ranking_base_url,
        model=config.ai.ranking_model,
        timeout_seconds=config.ai.timeout_seconds,
        http_client=http_client,
    )
