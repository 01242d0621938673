"""
AI web-search client - asks a Perplexity-compatible chat-completions API
for an institution's current rate and turns the answer into an
``Observation`` with origin ``api``.

Credential placement (.env, gitignored):
  PERPLEXITY_API_KEY  - enables live mode. Without it the client serves
                        ``FIXTURE_RESPONSES`` so sweeps run offline.

Response contract
-----------------
The model is asked to answer with a single JSON object::

    {"bankName": "...", "accountType": "savings", "rate": 4.25, "apy": 4.35,
     "minDeposit": 0, "term": null, "features": ["..."],
     "sourceUrl": "https://...", "confidence": "high"}

The last ``{...}`` block in the answer is parsed. Answers with no APY or
``confidence == "low"`` yield ``None`` (no data), not an error.
"""

from __future__ import annotations

import json
import logging
import os
import re
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, ClassVar, Optional

from rate_catalog.config import AppConfig
from rate_catalog.errors import UpstreamUnavailable
from rate_catalog.ingestion.institutions import InstitutionPages, find_institution
from rate_catalog.models.rate import Observation
from rate_catalog.taxonomy.rate_taxonomy import AccountType, SourceOrigin

if TYPE_CHECKING:
    import httpx

logger = logging.getLogger(__name__)

_JSON_OBJECT_RE = re.compile(r"\{[^{}]*\}", re.DOTALL)


class AISearchClient:
    """Rate lookup through an AI web-search model.

    Usage (fixture mode)::

        client = AISearchClient()
        obs = client.search("Ally Bank", AccountType.SAVINGS)

    Usage (live)::

        client = AISearchClient(api_key=os.environ["PERPLEXITY_API_KEY"])
    """

    FIXTURE_RESPONSES: ClassVar[dict[tuple[str, str], dict[str, Any]]] = {
        ("ally bank", "savings"): {
            "bankName": "Ally Bank", "accountType": "savings",
            "rate": 4.20, "apy": 4.30, "minDeposit": 0,
            "features": ["No Monthly Fee", "Online Banking"],
            "sourceUrl": "https://www.ally.com/bank/online-savings-account/",
            "confidence": "high",
        },
        ("ally bank", "cd"): {
            "bankName": "Ally Bank", "accountType": "cd",
            "rate": 4.00, "apy": 4.10, "minDeposit": 0, "term": 12,
            "features": ["No Minimum Deposit"],
            "sourceUrl": "https://www.ally.com/bank/high-yield-cd/",
            "confidence": "high",
        },
        ("marcus by goldman sachs", "savings"): {
            "bankName": "Marcus by Goldman Sachs", "accountType": "savings",
            "rate": 4.05, "apy": 4.15, "minDeposit": 0,
            "features": ["No Monthly Fee", "FDIC Insured"],
            "sourceUrl": "https://www.marcus.com/us/en/savings-accounts/high-yield-savings",
            "confidence": "high",
        },
        ("synchrony bank", "savings"): {
            "bankName": "Synchrony Bank", "accountType": "savings",
            "rate": 4.45, "apy": 4.55, "minDeposit": 0,
            "features": ["No Monthly Fee", "ATM Card"],
            "sourceUrl": "https://www.synchronybank.com/banking/high-yield-savings/",
            "confidence": "medium",
        },
        ("chase bank", "checking"): {
            "bankName": "Chase Bank", "accountType": "checking",
            "rate": 0.01, "apy": 0.01, "minDeposit": 0,
            "confidence": "low",
        },
    }

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = "https://api.perplexity.ai",
        model: str = "sonar",
        timeout_seconds: float = 30.0,
        institutions: Optional[list[InstitutionPages]] = None,
        http_client: Optional["httpx.Client"] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.institutions = institutions or []
        self._http_client = http_client

    @property
    def is_fixture(self) -> bool:
        return not self.api_key

    def search(
        self, institution_name: str, account_type: AccountType
    ) -> Optional[Observation]:
        """Look up one institution's current rate for ``account_type``.

        Returns:
            An ``api``-origin observation, or ``None`` when the model has no
            confident answer.

        Raises:
            UpstreamUnavailable: If the API is unreachable or errors.
        """
        page_url = self._page_url(institution_name, account_type)
        if self.is_fixture:
            payload = self.FIXTURE_RESPONSES.get(
                (institution_name.strip().lower(), account_type.value)
            )
        else:
            payload = self._fetch_payload(institution_name, account_type, page_url)

        return self._to_observation(payload, institution_name, account_type, page_url)

    # ── Private helpers ───────────────────────────────────────────────────────

    def _page_url(self, institution_name: str, account_type: AccountType) -> Optional[str]:
        inst = find_institution(institution_name, self.institutions)
        return inst.page_for(account_type) if inst else None

    def _build_prompt(
        self, institution_name: str, account_type: AccountType, page_url: Optional[str]
    ) -> str:
        year = datetime.now(timezone.utc).year
        where = (
            f"the page {page_url}"
            if page_url
            else f"{institution_name}'s official website"
        )
        return (
            f"What is {institution_name}'s current {account_type.value} account APY "
            f"({year})? Check {where}. Answer with ONLY a JSON object with keys "
            '"bankName", "accountType", "rate", "apy", "minDeposit", "term" '
            '(months, CDs only), "features" (list of strings), "sourceUrl" and '
            '"confidence" ("high", "medium" or "low").'
        )

    def _fetch_payload(
        self,
        institution_name: str,
        account_type: AccountType,
        page_url: Optional[str],
    ) -> Optional[dict[str, Any]]:
        import httpx

        body = {
            "model": self.model,
            "messages": [
                {
                    "role": "user",
                    "content": self._build_prompt(institution_name, account_type, page_url),
                },
            ],
            "stream": False,
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
            raise UpstreamUnavailable(
                f"AI search failed for {institution_name} {account_type}: {exc}"
            ) from exc
        finally:
            if self._http_client is None:
                client.close()

        text = message_text(data)
        logger.debug("AI search answer for %s %s: %s", institution_name, account_type, text)
        return _extract_json_object(text)

    def _to_observation(
        self,
        payload: Optional[dict[str, Any]],
        institution_name: str,
        account_type: AccountType,
        page_url: Optional[str],
    ) -> Optional[Observation]:
        if not payload or not payload.get("apy") or payload.get("confidence") == "low":
            logger.info(
                "No confident AI search result for %s %s; skipping.",
                institution_name, account_type,
            )
            return None

        apy = payload["apy"]
        return Observation(
            institution_name=payload.get("bankName") or institution_name,
            account_type=payload.get("accountType") or account_type.value,
            rate=payload.get("rate") or apy,
            apy=apy,
            min_deposit=payload.get("minDeposit"),
            term=payload.get("term") if account_type is AccountType.CD else None,
            features=payload.get("features") or None,
            origin=SourceOrigin.API.value,
            source_url=payload.get("sourceUrl") or page_url,
        )


def message_text(data: Any) -> str:
    """Pull the assistant text out of a chat-completions response."""
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise UpstreamUnavailable(f"Malformed chat completion response: {exc}") from exc
    if isinstance(content, list):
        return "".join(chunk.get("text", "") for chunk in content if isinstance(chunk, dict))
    return content or ""


def _extract_json_object(text: str) -> Optional[dict[str, Any]]:
    """Parse the last flat ``{...}`` block in ``text``, or return ``None``."""
    matches = _JSON_OBJECT_RE.findall(text)
    if not matches:
        logger.warning("No JSON object found in AI search answer.")
        return None
    try:
        parsed = json.loads(matches[-1])
    except json.JSONDecodeError as exc:
        logger.warning("Could not parse AI search JSON: %s", exc)
        return None
    return parsed if isinstance(parsed, dict) else None


def build_search_client(
    config: AppConfig,
    institutions: Optional[list[InstitutionPages]] = None,
    http_client: Optional["httpx.Client"] = None,
) -> AISearchClient:
    """Return a client configured from ``[ai]`` and ``PERPLEXITY_API_KEY``.

    Without the key the client runs in fixture mode.
    """
    api_key = os.environ.get("PERPLEXITY_API_KEY") or None
    return AISearchClient(
        api_key=api_key,
        base_url=config.ai.search_base_url,
        model=config.ai.search_model,
        timeout_seconds=config.ai.timeout_seconds,
        institutions=institutions,
        http_client=http_client,
    )
