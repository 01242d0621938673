"""
Observation sources for the nightly full refresh and manual imports.

A source produces raw ``Observation`` objects; it never touches the store.
The merge rules live in ``rate_catalog.catalog.merge``.

Sources:
  FixtureRateSource  - published savings/checking rates for the banks the
                       nightly sweep covers; origin ``scraped``.
  JsonFileSource     - a JSON array of observation dicts on disk (manual
                       imports and test fixtures).
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import ClassVar, Protocol

from rate_catalog.catalog.normalizer import parse_observation
from rate_catalog.errors import ValidationError
from rate_catalog.models.rate import Observation

logger = logging.getLogger(__name__)


class ObservationSource(Protocol):
    source_name: str

    def fetch_observations(self) -> list[Observation]: ...


class FixtureRateSource:
    """Offline rate sheet standing in for the per-bank page scrapers.

    Usage::

        source = FixtureRateSource()
        observations = source.fetch_observations()
    """

    source_name: ClassVar[str] = "fixture_scraper"

    FIXTURE_RECORDS: ClassVar[list[dict]] = [
        {
            "institution_name": "Marcus by Goldman Sachs",
            "account_type": "savings",
            "rate": 4.10, "apy": 4.20, "min_deposit": 0,
            "features": ["No Monthly Fee", "Online Banking", "Mobile Banking", "FDIC Insured"],
            "source_url": "https://www.marcus.com/us/en/savings-accounts",
        },
        {
            "institution_name": "Ally Bank",
            "account_type": "savings",
            "rate": 4.25, "apy": 4.35, "min_deposit": 0,
            "features": ["No Monthly Fee", "Online Banking", "ATM Fee Reimbursement"],
            "source_url": "https://www.ally.com/bank/online-savings-account/",
        },
        {
            "institution_name": "Discover Bank",
            "account_type": "savings",
            "rate": 4.00, "apy": 4.05, "min_deposit": 0,
            "features": [
                "No Monthly Fee", "Online Banking", "Mobile Banking",
                "No Minimum Balance", "FDIC Insured",
            ],
            "source_url": "https://www.discover.com/online-banking/savings-account/",
        },
        {
            "institution_name": "Capital One 360",
            "account_type": "savings",
            "rate": 4.10, "apy": 4.25, "min_deposit": 0,
            "features": ["No Monthly Fee", "Online Banking", "Mobile Banking", "No Minimum Balance"],
            "source_url": "https://www.capitalone.com/bank/savings-accounts/online-performance-savings-account/",
        },
        {
            "institution_name": "Huntington Bank",
            "account_type": "savings",
            "rate": 0.05, "apy": 0.05, "min_deposit": 0,
            "features": ["Branch Access", "Online Banking", "Mobile Banking", "ATM Access"],
            "source_url": "https://www.huntington.com/Personal/checking-savings/savings",
        },
        {
            "institution_name": "Huntington Bank",
            "account_type": "checking",
            "rate": 0.01, "apy": 0.01, "min_deposit": 0,
            "features": ["Branch Access", "Online Banking", "Mobile Banking", "Debit Card", "Check Writing"],
            "source_url": "https://www.huntington.com/Personal/checking",
        },
        {
            "institution_name": "KeyBank",
            "account_type": "savings",
            "rate": 0.02, "apy": 0.02, "min_deposit": 25,
            "features": ["Branch Access", "Online Banking", "Mobile Banking", "ATM Access"],
            "source_url": "https://www.key.com/personal/bank-accounts/savings-accounts.jsp",
        },
        {
            "institution_name": "KeyBank",
            "account_type": "checking",
            "rate": 0.01, "apy": 0.01, "min_deposit": 0,
            "features": ["Branch Access", "Online Banking", "Mobile Banking", "Debit Card", "Check Writing"],
            "source_url": "https://www.key.com/personal/bank-accounts/checking-accounts.jsp",
        },
        {
            "institution_name": "PNC Bank",
            "account_type": "savings",
            "rate": 4.25, "apy": 4.35, "min_deposit": 0,
            "features": ["Online Banking", "Mobile Banking", "Branch Access", "No Monthly Fee", "FDIC Insured"],
            "source_url": "https://www.pnc.com/en/personal-banking/banking/savings/pnc-high-yield-savings.html",
        },
        {
            "institution_name": "Citizens Bank",
            "account_type": "savings",
            "rate": 4.25, "apy": 4.35, "min_deposit": 1,
            "features": ["Branch Access", "Online Banking", "Mobile Banking", "No Monthly Fee"],
            "source_url": "https://www.citizensbank.com/savings/citizens-savings.aspx",
        },
        {
            "institution_name": "Wells Fargo",
            "account_type": "savings",
            "rate": 0.15, "apy": 0.15, "min_deposit": 25,
            "features": ["Branch Access", "Online Banking", "Mobile Banking", "ATM Access"],
            "source_url": "https://www.wellsfargo.com/savings-cds/way2save-savings-account/",
        },
        {
            "institution_name": "Bank of America",
            "account_type": "savings",
            "rate": 0.01, "apy": 0.01, "min_deposit": 100,
            "features": ["Branch Access", "Online Banking", "Mobile Banking", "ATM Access"],
            "source_url": "https://www.bankofamerica.com/deposits/savings-accounts/",
        },
        {
            "institution_name": "U.S. Bank",
            "account_type": "savings",
            "rate": 0.01, "apy": 0.01, "min_deposit": 25,
            "features": ["Branch Access", "Online Banking", "Mobile Banking", "ATM Access"],
            "source_url": "https://www.usbank.com/bank-accounts/savings-accounts/standard-savings-account.html",
        },
        {
            "institution_name": "Synchrony Bank",
            "account_type": "savings",
            "rate": 4.50, "apy": 4.60, "min_deposit": 0,
            "features": [
                "No Monthly Fee", "Online Banking", "Mobile Banking",
                "No Minimum Balance", "ATM Card", "FDIC Insured",
            ],
            "source_url": "https://www.synchronybank.com/banking/high-yield-savings/",
        },
        {
            "institution_name": "Barclays",
            "account_type": "savings",
            "rate": 4.50, "apy": 4.65, "min_deposit": 0,
            "features": ["No Monthly Fee", "Online Banking", "Mobile Banking", "No Minimum Balance"],
            "source_url": "https://www.banking.barclaysus.com/online-savings.html",
        },
    ]

    def fetch_observations(self) -> list[Observation]:
        observations = [
            parse_observation({**rec, "origin": "scraped"}) for rec in self.FIXTURE_RECORDS
        ]
        logger.info("Fixture source produced %d observation(s)", len(observations))
        return observations


class JsonFileSource:
    """Observations from a JSON file holding a list of observation dicts.

    Entries without an ``origin`` key take ``default_origin``. Malformed
    entries are logged and skipped so one bad row does not sink an import.
    """

    source_name: ClassVar[str] = "json_file"

    def __init__(self, path: str | Path, default_origin: str = "scraped") -> None:
        self.path = Path(path)
        self.default_origin = default_origin

    def fetch_observations(self) -> list[Observation]:
        """Read and parse the file.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValidationError: If the top-level JSON value is not a list.
        """
        with open(self.path, encoding="utf-8") as f:
            raw = json.load(f)
        if not isinstance(raw, list):
            raise ValidationError(f"{self.path} must contain a JSON array of observations.")

        observations: list[Observation] = []
        for idx, entry in enumerate(raw):
            if not isinstance(entry, dict):
                logger.warning("Skipping entry %d in %s: not an object", idx, self.path)
                continue
            try:
                observations.append(
                    parse_observation({"origin": self.default_origin, **entry})
                )
            except ValidationError as exc:
                logger.warning("Skipping entry %d in %s: %s", idx, self.path, exc)
        logger.info("Loaded %d observation(s) from %s", len(observations), self.path)
        return observations
