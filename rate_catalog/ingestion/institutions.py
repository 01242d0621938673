"""
Institution registry: which banks the AI search sweeps, and where each one
publishes its rates.

Loads ``InstitutionPages`` entries from ``config/institutions.toml`` (or a
caller-supplied path). The registry is loaded lazily on first access and
cached for the lifetime of the process; pass an explicit ``path`` in tests.

TOML structure
--------------
    [[institutions]]
    name        = "Ally Bank"
    savings_url = "https://www.ally.com/bank/online-savings-account/"
    homepage    = "https://www.ally.com"
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict

from rate_catalog.taxonomy.rate_taxonomy import AccountType

_REGISTRY_CACHE: Optional[list["InstitutionPages"]] = None
_CACHE_PATH: Optional[str] = None

_PROJECT_ROOT = Path(__file__).parent.parent.parent


class InstitutionPages(BaseModel):
    """Rate pages for one institution. Any page may be missing."""

    model_config = ConfigDict(frozen=True)

    name: str
    savings_url: Optional[str] = None
    checking_url: Optional[str] = None
    cd_url: Optional[str] = None
    money_market_url: Optional[str] = None
    homepage: Optional[str] = None

    def page_for(self, account_type: AccountType) -> Optional[str]:
        """Rate page for ``account_type``, falling back to the homepage."""
        specific = {
            AccountType.SAVINGS: self.savings_url,
            AccountType.CHECKING: self.checking_url,
            AccountType.CD: self.cd_url,
            AccountType.MONEY_MARKET: self.money_market_url,
        }[account_type]
        return specific or self.homepage


def _default_path() -> Path:
    return _PROJECT_ROOT / "config" / "institutions.toml"


def load_institutions(path: Optional[str] = None) -> list[InstitutionPages]:
    """Return all configured institutions (cached after first load).

    Raises:
        FileNotFoundError: If the registry file does not exist.
        tomllib.TOMLDecodeError: If the TOML is malformed.
    """
    global _REGISTRY_CACHE, _CACHE_PATH

    resolved = Path(path) if path else _default_path()
    if _REGISTRY_CACHE is not None and _CACHE_PATH == str(resolved):
        return _REGISTRY_CACHE

    if not resolved.exists():
        raise FileNotFoundError(
            f"Institution registry not found: {resolved}\n"
            "Expected at config/institutions.toml."
        )
    with open(resolved, "rb") as f:
        raw = tomllib.load(f)

    _REGISTRY_CACHE = [InstitutionPages(**block) for block in raw.get("institutions", [])]
    _CACHE_PATH = str(resolved)
    return _REGISTRY_CACHE


def find_institution(
    name: str, institutions: list[InstitutionPages]
) -> Optional[InstitutionPages]:
    """Case-insensitive substring match in either direction."""
    needle = name.strip().lower()
    if not needle:
        return None
    for inst in institutions:
        hay = inst.name.lower()
        if needle in hay or hay in needle:
            return inst
    return None


def clear_institution_cache() -> None:
    global _REGISTRY_CACHE, _CACHE_PATH
    _REGISTRY_CACHE = None
    _CACHE_PATH = None
