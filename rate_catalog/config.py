"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``      - committed static defaults
  2. ``config/local.toml``        - optional local overrides (gitignored)
  3. ``.env``                     - local secrets and env overrides (gitignored)
  4. Environment variables        - ``RATE_CATALOG_*`` prefix

Entry point: ``load_config(config_path=None) -> AppConfig``

Secrets (``OPENAI_API_KEY``, ``PERPLEXITY_API_KEY``, ``SMTP_USER``,
``SMTP_PASS``) never live in TOML; they are read from the environment by the
collaborator that needs them, after ``load_config()`` has loaded ``.env``.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator

# ── Sub-config models ─────────────────────────────────────────────────────────


class DatabaseConfig(BaseModel):
    """SQLite database connection settings."""

    model_config = ConfigDict(frozen=True)

    db_path: str = "data/db/rate_catalog.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000


class TrustConfig(BaseModel):
    """Auto-flag thresholds applied to community submissions."""

    model_config = ConfigDict(frozen=True)

    apy_ceiling: float = 15.0       # absolute APY ceiling (percent)
    outlier_multiple: float = 2.0   # x times the sourced average for the account type

    @field_validator("apy_ceiling", "outlier_multiple")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"Trust thresholds must be positive, got {v}.")
        return v


class LedgerConfig(BaseModel):
    """Moderation and listing limits."""

    model_config = ConfigDict(frozen=True)

    high_reports_threshold: int = 3
    public_list_limit: int = 100
    admin_list_limit: int = 500


class RankingConfig(BaseModel):
    """Recommendation ranking bounds."""

    model_config = ConfigDict(frozen=True)

    candidate_limit: int = 20
    top_n: int = 5

    @field_validator("candidate_limit", "top_n")
    @classmethod
    def validate_at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Ranking limits must be >= 1, got {v}.")
        return v


class RefreshConfig(BaseModel):
    """Nightly full refresh and targeted search update settings."""

    model_config = ConfigDict(frozen=True)

    inter_item_delay_seconds: float = 2.0
    search_account_types: list[str] = ["savings", "checking", "cd"]
    nightly_time: str = "02:00"

    @field_validator("inter_item_delay_seconds")
    @classmethod
    def validate_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"inter_item_delay_seconds must be >= 0, got {v}.")
        return v


class AIConfig(BaseModel):
    """Endpoints for the AI ranking and AI search collaborators."""

    model_config = ConfigDict(frozen=True)

    ranking_base_url: str = "https://api.openai.com/v1"
    ranking_model: str = "gpt-3.5-turbo"
    search_base_url: str = "https://api.perplexity.ai"
    search_model: str = "sonar"
    timeout_seconds: float = 30.0


class NotifyConfig(BaseModel):
    """Outbound email settings (credentials come from SMTP_USER / SMTP_PASS)."""

    model_config = ConfigDict(frozen=True)

    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    admin_email: str = ""
    app_url: str = "http://localhost:5173"


class AlertsConfig(BaseModel):
    """Rate alert matching settings."""

    model_config = ConfigDict(frozen=True)

    max_matches: int = 10
    max_target_rate: float = 20.0


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = "data/logs/rate_catalog.log"
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class AppConfig(BaseModel):
    """Complete application configuration.

    The CLI, the pipeline stages and ``CatalogService`` all receive an
    ``AppConfig`` instance built by ``load_config()``.
    """

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = DatabaseConfig()
    trust: TrustConfig = TrustConfig()
    ledger: LedgerConfig = LedgerConfig()
    ranking: RankingConfig = RankingConfig()
    refresh: RefreshConfig = RefreshConfig()
    ai: AIConfig = AIConfig()
    notify: NotifyConfig = NotifyConfig()
    alerts: AlertsConfig = AlertsConfig()
    logging: LoggingConfig = LoggingConfig()
    debug: bool = False


# ── Loader ────────────────────────────────────────────────────────────────────

_PROJECT_ROOT = Path(__file__).parent.parent


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (contains pyproject.toml)."""
    candidate = Path(__file__).parent
    for _ in range(5):
        if (candidate / "pyproject.toml").exists():
            return candidate
        candidate = candidate.parent
    return _PROJECT_ROOT


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load and merge application configuration.

    Args:
        config_path: Explicit path to a TOML config file. Defaults to
            ``<project_root>/config/default.toml``.

    Returns:
        Fully validated ``AppConfig`` instance.

    Raises:
        FileNotFoundError: If the specified ``config_path`` does not exist.
        pydantic.ValidationError: If merged config values fail validation.
    """
    root = _find_project_root()

    load_dotenv(dotenv_path=root / ".env", override=False)

    if config_path is None:
        config_path = root / "config" / "default.toml"

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n"
            "Create config/default.toml or pass --config."
        )

    with open(config_path, "rb") as f:
        raw: dict[str, Any] = tomllib.load(f)

    local_config_path = config_path.parent / "local.toml"
    if local_config_path.exists():
        with open(local_config_path, "rb") as f:
            local_raw: dict[str, Any] = tomllib.load(f)
        raw = _deep_merge(raw, local_raw)

    raw = _apply_env_overrides(raw)

    return _build_app_config(raw)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into ``base``."""
    result = dict(base)
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Apply RATE_CATALOG_* env vars to the raw config dict.

    Supported overrides:
      RATE_CATALOG_DB_PATH    → raw["database"]["db_path"]
      RATE_CATALOG_LOG_LEVEL  → raw["logging"]["level"]
      RATE_CATALOG_DEBUG      → raw["debug"]
    """
    if db_path := os.environ.get("RATE_CATALOG_DB_PATH"):
        raw.setdefault("database", {})["db_path"] = db_path

    if log_level := os.environ.get("RATE_CATALOG_LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = log_level

    if debug := os.environ.get("RATE_CATALOG_DEBUG"):
        raw["debug"] = debug.lower() in ("1", "true", "yes")

    return raw


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """Map raw TOML dict to ``AppConfig`` model structure."""
    project = raw.pop("project", {})

    return AppConfig(
        database=DatabaseConfig(**raw.get("database", {})),
        trust=TrustConfig(**raw.get("trust", {})),
        ledger=LedgerConfig(**raw.get("ledger", {})),
        ranking=RankingConfig(**raw.get("ranking", {})),
        refresh=RefreshConfig(**raw.get("refresh", {})),
        ai=AIConfig(**raw.get("ai", {})),
        notify=NotifyConfig(**raw.get("notify", {})),
        alerts=AlertsConfig(**raw.get("alerts", {})),
        logging=LoggingConfig(**raw.get("logging", {})),
        debug=raw.get("debug", project.get("debug", False)),
    )
