"""
Rate Catalog - CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Validate inputs.
  4. Execute the action through ``CatalogService`` or a pipeline stage.
  5. Report result to stdout.

Install and run::

    pip install -e .
    rate-catalog --help
    rate-catalog init-db
    rate-catalog run-full-refresh
    rate-catalog submit --institution "Ally Bank" --type savings --rate 4.25
    rate-catalog recommend --type savings --feature "No Monthly Fee"
    rate-catalog admin-stats

Errors raised by the catalog (``ValidationError``, ``NotFoundError`` ...)
are printed as ``[ERROR] ...`` and exit with code 1.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer

app = typer.Typer(
    name="rate-catalog",
    help="Bank interest-rate catalog: aggregation, trust scoring, moderation and ranking.",
    add_completion=False,
)

_DB_PATH_HELP = "Override DB path from config (e.g. data/db/test.db)."
_CONFIG_HELP = "Path to TOML config file."


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from rate_catalog.config import load_config

    try:
        cfg_path = Path(config_path) if config_path else None
        return load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config):
    """Set up logging from config."""
    from rate_catalog.utils.logging import configure_logging
    configure_logging(config.logging)


def _ensure_schema(config, db_path: str) -> None:
    """Apply the schema (idempotent) so every command works on a fresh DB."""
    from rate_catalog.db.connection import get_connection
    from rate_catalog.db.schema import apply_schema

    with get_connection(
        db_path,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    ) as conn:
        apply_schema(conn)


def _setup(config_path: Optional[str], db_path: Optional[str]):
    """Config + logging + schema; returns ``(config, target_db)``."""
    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    target_db = db_path or config.database.db_path
    _ensure_schema(config, target_db)
    return config, target_db


def _build_service(config, db_path: str, use_ai: bool = True):
    from rate_catalog.catalog.service import CatalogService
    from rate_catalog.ingestion.ai_ranking_client import build_ai_ranker
    from rate_catalog.notify.notifier import build_notifier

    return CatalogService(
        config,
        db_path=db_path,
        notifier=build_notifier(config),
        ai_ranker=build_ai_ranker(config) if use_ai else None,
    )


def _fail(exc: Exception) -> typer.Exit:
    """Print a catalog or validation error and return the exit to raise."""
    typer.echo(f"[ERROR] {exc}", err=True)
    return typer.Exit(code=1)


# ── Setup commands ────────────────────────────────────────────────────────────

@app.command("init-db")
def init_db(
    db_path: Optional[str] = typer.Option(None, "--db-path", help=_DB_PATH_HELP),
    config_path: Optional[str] = typer.Option(None, "--config", help=_CONFIG_HELP),
) -> None:
    """Initialize the SQLite database and apply the full schema.

    Safe to run multiple times; all DDL uses IF NOT EXISTS.
    Also runs pending schema migrations.
    """
    from rate_catalog.db.connection import get_connection
    from rate_catalog.db.migrations import run_migrations
    from rate_catalog.db.schema import ALL_TABLE_NAMES, apply_schema
    from rate_catalog.errors import CatalogError

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    target_path = db_path or config.database.db_path
    typer.echo(f"Initializing database at: {target_path}")

    try:
        with get_connection(
            target_path,
            wal_mode=config.database.wal_mode,
            busy_timeout_ms=config.database.busy_timeout_ms,
        ) as conn:
            apply_schema(conn)
            migrations_applied = run_migrations(conn)
    except CatalogError as exc:
        raise _fail(exc)

    typer.echo(f"  Tables: {len(ALL_TABLE_NAMES)} created/verified.")
    typer.echo(f"  Migrations applied: {migrations_applied}")
    typer.echo("[OK] Database ready.")


@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = typer.Option(
        None, "--config", help="Path to TOML config file (default: config/default.toml)."
    ),
    show_full: bool = typer.Option(False, "--full", help="Print full config including all fields."),
) -> None:
    """Validate the configuration file and print parsed values.

    Exits with code 1 if the config fails validation.
    """
    config = _load_config_or_exit(config_path)

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Database path:      {config.database.db_path}")
    typer.echo(f"  APY ceiling:        {config.trust.apy_ceiling:g}%")
    typer.echo(f"  Outlier multiple:   {config.trust.outlier_multiple:g}x")
    typer.echo(f"  High reports at:    {config.ledger.high_reports_threshold}")
    typer.echo(
        f"  Ranking:            top {config.ranking.top_n} of "
        f"{config.ranking.candidate_limit} candidates"
    )
    typer.echo(f"  Nightly refresh:    {config.refresh.nightly_time}")
    typer.echo(f"  Search types:       {', '.join(config.refresh.search_account_types)}")
    typer.echo(f"  Log level:          {config.logging.level}")
    typer.echo(f"  Debug mode:         {config.debug}")

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        typer.echo(json.dumps(config.model_dump(), indent=2, default=str))

    typer.echo("")
    typer.echo("[OK] Config valid.")


# ── Submissions & imports ─────────────────────────────────────────────────────

@app.command("submit")
def submit(
    institution: str = typer.Option(..., "--institution", help="Bank or credit union name."),
    account_type: str = typer.Option(..., "--type", help="checking | savings | cd | money-market"),
    rate: float = typer.Option(..., "--rate", help="Nominal rate in percent."),
    apy: Optional[float] = typer.Option(None, "--apy", help="APY in percent (defaults to --rate)."),
    min_deposit: Optional[float] = typer.Option(None, "--min-deposit", help="Minimum opening deposit."),
    term: Optional[int] = typer.Option(None, "--term", help="CD term in months (cd only)."),
    features: Optional[list[str]] = typer.Option(None, "--feature", help="Feature label. Repeatable."),
    source_url: Optional[str] = typer.Option(None, "--source-url"),
    notes: Optional[str] = typer.Option(None, "--notes"),
    city: Optional[str] = typer.Option(None, "--city"),
    state: Optional[str] = typer.Option(None, "--state"),
    zip_code: Optional[str] = typer.Option(None, "--zip"),
    availability: Optional[str] = typer.Option(None, "--availability", help="national | regional | local"),
    submitted_by: Optional[str] = typer.Option(None, "--submitted-by"),
    db_path: Optional[str] = typer.Option(None, "--db-path", help=_DB_PATH_HELP),
    config_path: Optional[str] = typer.Option(None, "--config", help=_CONFIG_HELP),
) -> None:
    """Submit a community rate observation.

    Suspicious values (above the APY ceiling, or far above the sourced
    average) are stored but start hidden until the community verifies them.
    """
    from rate_catalog.errors import CatalogError

    config, target_db = _setup(config_path, db_path)
    service = _build_service(config, target_db, use_ai=False)

    location = None
    if city or state or zip_code:
        location = {"city": city, "state": state, "zip_code": zip_code}

    try:
        record = service.submit_community_observation({
            "institution_name": institution,
            "account_type": account_type,
            "rate": rate,
            "apy": apy,
            "min_deposit": min_deposit,
            "term": term,
            "features": features,
            "origin": "community",
            "source_url": source_url,
            "notes": notes,
            "location": location,
            "availability": availability,
            "submitted_by": submitted_by,
        })
    except CatalogError as exc:
        raise _fail(exc)

    typer.echo(
        f"  Record #{record.record_id}: {record.institution_name} {record.account_type} "
        f"{record.effective_yield:.2f}% APY"
    )
    if record.is_visible:
        typer.echo("[OK] Rate submitted.")
    else:
        typer.echo(f"  {record.notes}")
        typer.echo("[OK] Rate submitted (auto-flagged; hidden until verified).")


@app.command("import-observations")
def import_observations(
    file: str = typer.Option(..., "--file", "-f", help="JSON array of observation objects."),
    origin: str = typer.Option(
        "scraped", "--origin", help="Origin for entries without one (community | scraped | api)."
    ),
    policy: str = typer.Option(
        "preserve-trust", "--policy", help="preserve-trust | reset-trust (sourced entries only)."
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Validate entries but do not write."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help=_DB_PATH_HELP),
    config_path: Optional[str] = typer.Option(None, "--config", help=_CONFIG_HELP),
) -> None:
    """Import observations from a JSON file.

    \b
    Community entries become new records (trust-scored). Scraped/api entries
    are upserted by (institution_name, account_type) with --policy.
    Malformed entries are reported and skipped.
    """
    from rate_catalog.catalog.merge import MergeOutcome
    from rate_catalog.catalog.normalizer import normalize_observation
    from rate_catalog.errors import CatalogError
    from rate_catalog.ingestion.sources import JsonFileSource
    from rate_catalog.taxonomy.rate_taxonomy import RefreshPolicy

    config, target_db = _setup(config_path, db_path)

    path = Path(file)
    if not path.exists():
        typer.echo(f"[ERROR] File not found: {path}", err=True)
        raise typer.Exit(code=1)
    try:
        refresh_policy = RefreshPolicy(policy)
    except ValueError:
        typer.echo(f"[ERROR] Unknown policy '{policy}'.", err=True)
        raise typer.Exit(code=1)

    try:
        observations = JsonFileSource(path, default_origin=origin).fetch_observations()
    except (CatalogError, json.JSONDecodeError, OSError) as exc:
        raise _fail(exc)
    typer.echo(f"Loaded {len(observations)} observation(s) from {path}")

    if dry_run:
        invalid = 0
        for obs in observations:
            try:
                normalize_observation(obs)
            except CatalogError as exc:
                invalid += 1
                typer.echo(f"  INVALID {obs.institution_name}: {exc}")
        typer.echo(f"[DRY RUN] {len(observations) - invalid} valid, {invalid} invalid. Nothing written.")
        return

    service = _build_service(config, target_db, use_ai=False)
    created = updated = failed = 0
    for obs in observations:
        try:
            if obs.origin.strip().lower() == "community":
                service.submit_community_observation(obs)
                created += 1
            else:
                result = service.merge_sourced(obs, refresh_policy)
                if result.outcome is MergeOutcome.CREATED:
                    created += 1
                elif result.outcome is MergeOutcome.UPDATED:
                    updated += 1
        except CatalogError as exc:
            failed += 1
            typer.echo(f"  FAILED {obs.institution_name} {obs.account_type}: {exc}", err=True)

    typer.echo(f"  created={created} updated={updated} failed={failed}")
    typer.echo("[OK] Import complete.")


# ── Verification ledger ───────────────────────────────────────────────────────

@app.command("verify")
def verify(
    record_id: int = typer.Argument(..., help="Record to verify."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help=_DB_PATH_HELP),
    config_path: Optional[str] = typer.Option(None, "--config", help=_CONFIG_HELP),
) -> None:
    """Confirm a rate is accurate (verification_count + 1)."""
    from rate_catalog.errors import CatalogError

    config, target_db = _setup(config_path, db_path)
    try:
        snapshot = _build_service(config, target_db, use_ai=False).verify(record_id)
    except CatalogError as exc:
        raise _fail(exc)
    typer.echo(
        f"  Record #{record_id}: +{snapshot.verification_count}/-{snapshot.report_count} "
        f"visible={snapshot.is_visible}"
    )
    typer.echo("[OK] Verified.")


@app.command("report")
def report(
    record_id: int = typer.Argument(..., help="Record to report."),
    reason: str = typer.Option(..., "--reason", help="Why the rate looks wrong."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help=_DB_PATH_HELP),
    config_path: Optional[str] = typer.Option(None, "--config", help=_CONFIG_HELP),
) -> None:
    """Report an inaccurate rate (report_count + 1; admin is notified)."""
    from rate_catalog.errors import CatalogError

    config, target_db = _setup(config_path, db_path)
    try:
        snapshot = _build_service(config, target_db, use_ai=False).report(record_id, reason)
    except CatalogError as exc:
        raise _fail(exc)
    typer.echo(
        f"  Record #{record_id}: +{snapshot.verification_count}/-{snapshot.report_count} "
        f"visible={snapshot.is_visible}"
    )
    typer.echo("[OK] Reported.")


# ── Listings & ranking ────────────────────────────────────────────────────────

@app.command("list-rates")
def list_rates(
    account_type: Optional[str] = typer.Option(None, "--type"),
    origin: Optional[str] = typer.Option(None, "--origin"),
    min_rate: Optional[float] = typer.Option(None, "--min-rate"),
    max_deposit: Optional[float] = typer.Option(None, "--max-deposit"),
    state: Optional[str] = typer.Option(None, "--state"),
    zip_code: Optional[str] = typer.Option(None, "--zip"),
    limit: Optional[int] = typer.Option(None, "--limit"),
    db_path: Optional[str] = typer.Option(None, "--db-path", help=_DB_PATH_HELP),
    config_path: Optional[str] = typer.Option(None, "--config", help=_CONFIG_HELP),
) -> None:
    """List publicly visible rates, best yield first."""
    from pydantic import ValidationError

    from rate_catalog.models.rate import RateFilter
    from rate_catalog.reporting.formatters import format_rate_table

    config, target_db = _setup(config_path, db_path)
    try:
        rate_filter = RateFilter(
            account_type=account_type,
            origin=origin,
            min_rate=min_rate,
            max_min_deposit=max_deposit,
            state=state,
            zip_code=zip_code,
            limit=limit or config.ledger.public_list_limit,
        )
    except ValidationError as exc:
        raise _fail(exc)

    records = _build_service(config, target_db, use_ai=False).list_visible(rate_filter)
    typer.echo(format_rate_table(records))


@app.command("top-rates")
def top_rates(
    account_type: str = typer.Option("savings", "--type"),
    limit: int = typer.Option(5, "--limit"),
    db_path: Optional[str] = typer.Option(None, "--db-path", help=_DB_PATH_HELP),
    config_path: Optional[str] = typer.Option(None, "--config", help=_CONFIG_HELP),
) -> None:
    """Show the highest visible rates for one account type."""
    from rate_catalog.errors import CatalogError
    from rate_catalog.reporting.formatters import format_rate_table

    config, target_db = _setup(config_path, db_path)
    try:
        records = _build_service(config, target_db, use_ai=False).top_rates(account_type, limit)
    except CatalogError as exc:
        raise _fail(exc)
    typer.echo(format_rate_table(records, title=f"Top {account_type} rates"))


@app.command("recommend")
def recommend(
    account_type: str = typer.Option(..., "--type"),
    min_rate: Optional[float] = typer.Option(None, "--min-rate"),
    max_deposit: Optional[float] = typer.Option(None, "--max-deposit"),
    features: Optional[list[str]] = typer.Option(None, "--feature", help="Preferred feature. Repeatable."),
    location: Optional[str] = typer.Option(None, "--location"),
    no_ai: bool = typer.Option(False, "--no-ai", help="Skip the AI ranker even if configured."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help=_DB_PATH_HELP),
    config_path: Optional[str] = typer.Option(None, "--config", help=_CONFIG_HELP),
) -> None:
    """Rank visible rates against your preferences (top 5).

    \b
    Credential setup (.env, gitignored):
      OPENAI_API_KEY=...   → AI ranking, with rule-based fallback

    Without the key (or with --no-ai) the rule-based scorer ranks alone.
    """
    from pydantic import ValidationError

    from rate_catalog.errors import CatalogError
    from rate_catalog.models.recommendation import Preferences
    from rate_catalog.reporting.formatters import format_recommendations

    config, target_db = _setup(config_path, db_path)
    try:
        preferences = Preferences(
            account_type=account_type,
            min_rate=min_rate,
            max_min_deposit=max_deposit,
            preferred_features=features or (),
            location=location,
        )
        service = _build_service(config, target_db, use_ai=not no_ai)
        recommendations = service.rank(preferences.account_type, preferences)
    except (CatalogError, ValidationError) as exc:
        raise _fail(exc)
    typer.echo(format_recommendations(recommendations, preferences.account_type.value))


# ── Moderation ────────────────────────────────────────────────────────────────

@app.command("admin-list")
def admin_list(
    origin: Optional[str] = typer.Option(None, "--origin"),
    account_type: Optional[str] = typer.Option(None, "--type"),
    sort: str = typer.Option("apy", "--sort", help="apy | newest | oldest | reports"),
    limit: Optional[int] = typer.Option(None, "--limit"),
    db_path: Optional[str] = typer.Option(None, "--db-path", help=_DB_PATH_HELP),
    config_path: Optional[str] = typer.Option(None, "--config", help=_CONFIG_HELP),
) -> None:
    """List every record (hidden ones included) plus the high-reports bucket."""
    from rate_catalog.reporting.formatters import format_admin_table

    config, target_db = _setup(config_path, db_path)
    try:
        view = _build_service(config, target_db, use_ai=False).admin_view(
            origin, account_type, sort, limit  # type: ignore[arg-type]
        )
    except ValueError as exc:
        raise _fail(exc)
    typer.echo(
        format_admin_table(view.records, view.high_reports, config.ledger.high_reports_threshold)
    )


@app.command("admin-stats")
def admin_stats(
    db_path: Optional[str] = typer.Option(None, "--db-path", help=_DB_PATH_HELP),
    config_path: Optional[str] = typer.Option(None, "--config", help=_CONFIG_HELP),
) -> None:
    """Show catalog totals by origin and report status."""
    from rate_catalog.reporting.formatters import format_admin_stats

    config, target_db = _setup(config_path, db_path)
    stats = _build_service(config, target_db, use_ai=False).admin_stats()
    typer.echo(format_admin_stats(stats))


@app.command("admin-delete")
def admin_delete(
    record_ids: list[int] = typer.Argument(..., help="One or more record ids."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help=_DB_PATH_HELP),
    config_path: Optional[str] = typer.Option(None, "--config", help=_CONFIG_HELP),
) -> None:
    """Delete one or more records. Unknown ids are ignored in bulk mode."""
    from rate_catalog.errors import CatalogError

    config, target_db = _setup(config_path, db_path)
    service = _build_service(config, target_db, use_ai=False)
    try:
        if len(record_ids) == 1:
            service.delete_record(record_ids[0])
            deleted = 1
        else:
            deleted = service.bulk_delete(record_ids)
    except CatalogError as exc:
        raise _fail(exc)
    typer.echo(f"[OK] Deleted {deleted} record(s).")


@app.command("admin-reset")
def admin_reset(
    record_id: int = typer.Argument(..., help="Record whose counters to reset."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help=_DB_PATH_HELP),
    config_path: Optional[str] = typer.Option(None, "--config", help=_CONFIG_HELP),
) -> None:
    """Reset verification and report counters to 0."""
    from rate_catalog.errors import CatalogError

    config, target_db = _setup(config_path, db_path)
    try:
        _build_service(config, target_db, use_ai=False).reset_counters(record_id)
    except CatalogError as exc:
        raise _fail(exc)
    typer.echo(f"[OK] Counters reset on record #{record_id}.")


@app.command("admin-patch")
def admin_patch(
    record_id: int = typer.Argument(..., help="Record to edit."),
    assignments: list[str] = typer.Option(
        ..., "--set", help="field=value (features comma-separated). Repeatable."
    ),
    db_path: Optional[str] = typer.Option(None, "--db-path", help=_DB_PATH_HELP),
    config_path: Optional[str] = typer.Option(None, "--config", help=_CONFIG_HELP),
) -> None:
    """Edit record fields. Counters cannot be edited; use admin-reset."""
    from rate_catalog.errors import CatalogError

    config, target_db = _setup(config_path, db_path)

    changes: dict[str, object] = {}
    for item in assignments:
        field_name, sep, value = item.partition("=")
        if not sep:
            typer.echo(f"[ERROR] Expected field=value, got '{item}'.", err=True)
            raise typer.Exit(code=1)
        field_name = field_name.strip()
        changes[field_name] = (
            [f for f in value.split(",")] if field_name == "features" else value.strip()
        )

    try:
        record = _build_service(config, target_db, use_ai=False).patch_record(record_id, changes)
    except CatalogError as exc:
        raise _fail(exc)
    typer.echo(f"  Updated fields: {', '.join(sorted(changes))}")
    typer.echo(
        f"  Record #{record.record_id}: {record.institution_name} {record.account_type} "
        f"{record.effective_yield:.2f}% APY"
    )
    typer.echo("[OK] Record patched.")


# ── Batch stages ──────────────────────────────────────────────────────────────

@app.command("run-full-refresh")
def run_full_refresh(
    file: Optional[str] = typer.Option(
        None, "--file", "-f", help="JSON observations to use instead of the built-in rate sheet."
    ),
    db_path: Optional[str] = typer.Option(None, "--db-path", help=_DB_PATH_HELP),
    config_path: Optional[str] = typer.Option(None, "--config", help=_CONFIG_HELP),
) -> None:
    """Nightly sweep: merge every scraped rate with the reset-trust policy."""
    from rate_catalog.ingestion.sources import FixtureRateSource, JsonFileSource
    from rate_catalog.pipeline.full_refresh import FullRefreshStage

    config, target_db = _setup(config_path, db_path)
    source = JsonFileSource(file, default_origin="scraped") if file else FixtureRateSource()

    typer.echo(f"run-full-refresh | source={source.source_name} | db={target_db}")
    try:
        run = FullRefreshStage(config=config, db_path=target_db, source=source).run()
    except Exception as exc:
        typer.echo(f"[ERROR] Full refresh failed: {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"  status={run.status} | records created/updated={run.rows_processed}")
    typer.echo("[OK] Full refresh complete.")


@app.command("run-search-update")
def run_search_update(
    institutions: Optional[list[str]] = typer.Option(
        None, "--institution", help="Institution to look up. Repeatable; defaults to the registry."
    ),
    account_types: Optional[list[str]] = typer.Option(
        None, "--type", help="Account type. Repeatable; defaults to [refresh].search_account_types."
    ),
    db_path: Optional[str] = typer.Option(None, "--db-path", help=_DB_PATH_HELP),
    config_path: Optional[str] = typer.Option(None, "--config", help=_CONFIG_HELP),
) -> None:
    """AI-search refresh of known institutions with the preserve-trust policy.

    \b
    Credential setup (.env, gitignored):
      PERPLEXITY_API_KEY=...   → live AI search

    Without the key the sweep uses built-in fixture answers.
    """
    from rate_catalog.pipeline.search_update import SearchUpdateStage

    config, target_db = _setup(config_path, db_path)
    typer.echo(f"run-search-update | db={target_db}")
    try:
        run = SearchUpdateStage(config=config, db_path=target_db).run(
            institution_names=institutions or None,
            account_types=account_types or None,
        )
    except Exception as exc:
        typer.echo(f"[ERROR] Search update failed: {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"  status={run.status} | records created/updated={run.rows_processed}")
    typer.echo("[OK] Search update complete.")


@app.command("list-runs")
def list_runs(
    stage: Optional[str] = typer.Option(None, "--stage", help="full_refresh | search_update | alert_check"),
    limit: int = typer.Option(20, "--limit"),
    db_path: Optional[str] = typer.Option(None, "--db-path", help=_DB_PATH_HELP),
    config_path: Optional[str] = typer.Option(None, "--config", help=_CONFIG_HELP),
) -> None:
    """Show recent batch runs from the run_metadata audit log."""
    from rate_catalog.db.connection import get_connection
    from rate_catalog.db.repositories.run_repo import RunMetadataRepository
    from rate_catalog.reporting.formatters import format_run_history

    config, target_db = _setup(config_path, db_path)
    with get_connection(
        target_db,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    ) as conn:
        runs = RunMetadataRepository(conn).get_recent_runs(stage, limit)
    typer.echo(format_run_history(runs))


# ── Rate alerts ───────────────────────────────────────────────────────────────

@app.command("create-alert")
def create_alert(
    email: str = typer.Option(..., "--email"),
    account_type: str = typer.Option(..., "--type"),
    target: float = typer.Option(..., "--target", help="Target APY in percent."),
    frequency: str = typer.Option("daily", "--frequency", help="instant | daily | weekly"),
    db_path: Optional[str] = typer.Option(None, "--db-path", help=_DB_PATH_HELP),
    config_path: Optional[str] = typer.Option(None, "--config", help=_CONFIG_HELP),
) -> None:
    """Create (or retarget) a rate alert. Instant alerts are checked immediately."""
    from rate_catalog.errors import CatalogError

    config, target_db = _setup(config_path, db_path)
    try:
        alert = _build_service(config, target_db, use_ai=False).create_alert(
            email, account_type, target, frequency
        )
    except CatalogError as exc:
        raise _fail(exc)
    typer.echo(
        f"  Alert #{alert.alert_id}: {alert.email} {alert.account_type} "
        f">= {alert.target_rate:.2f}% ({alert.frequency})"
    )
    if alert.last_notified_at is not None:
        typer.echo("  Matching rates found; notification sent.")
    typer.echo("[OK] Alert saved.")


@app.command("list-alerts")
def list_alerts(
    email: str = typer.Option(..., "--email"),
    db_path: Optional[str] = typer.Option(None, "--db-path", help=_DB_PATH_HELP),
    config_path: Optional[str] = typer.Option(None, "--config", help=_CONFIG_HELP),
) -> None:
    """List active alerts for an email address."""
    from rate_catalog.reporting.formatters import format_alerts

    config, target_db = _setup(config_path, db_path)
    alerts = _build_service(config, target_db, use_ai=False).alerts_for(email)
    typer.echo(format_alerts(alerts, email.strip().lower()))


@app.command("delete-alert")
def delete_alert(
    alert_id: int = typer.Argument(..., help="Alert to deactivate."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help=_DB_PATH_HELP),
    config_path: Optional[str] = typer.Option(None, "--config", help=_CONFIG_HELP),
) -> None:
    """Deactivate a rate alert."""
    from rate_catalog.errors import CatalogError

    config, target_db = _setup(config_path, db_path)
    try:
        _build_service(config, target_db, use_ai=False).deactivate_alert(alert_id)
    except CatalogError as exc:
        raise _fail(exc)
    typer.echo(f"[OK] Alert #{alert_id} deactivated.")


@app.command("check-alerts")
def check_alerts(
    db_path: Optional[str] = typer.Option(None, "--db-path", help=_DB_PATH_HELP),
    config_path: Optional[str] = typer.Option(None, "--config", help=_CONFIG_HELP),
) -> None:
    """Notify every due alert whose target is met by a visible rate."""
    from rate_catalog.pipeline.alert_check import AlertCheckStage

    config, target_db = _setup(config_path, db_path)
    try:
        run = AlertCheckStage(config=config, db_path=target_db).run()
    except Exception as exc:
        typer.echo(f"[ERROR] Alert check failed: {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"  status={run.status} | alerts notified={run.rows_processed}")
    typer.echo("[OK] Alert check complete.")


@app.command("start-scheduler")
def start_scheduler(
    nightly_time: Optional[str] = typer.Option(
        None, "--nightly-time", help="Local HH:MM for the full refresh (default from config)."
    ),
    skip_initial_alerts: bool = typer.Option(
        False, "--skip-initial-alerts", help="Wait an hour before the first alert check."
    ),
    db_path: Optional[str] = typer.Option(None, "--db-path", help=_DB_PATH_HELP),
    config_path: Optional[str] = typer.Option(None, "--config", help=_CONFIG_HELP),
) -> None:
    """Run the nightly refresh and hourly alert check until Ctrl-C."""
    from rate_catalog.scheduler import SchedulerDaemon

    config, target_db = _setup(config_path, db_path)
    try:
        daemon = SchedulerDaemon(
            db_path=target_db,
            nightly_time=nightly_time or config.refresh.nightly_time,
            skip_initial_alerts=skip_initial_alerts,
            config_path=config_path,
        )
    except (ValueError, RuntimeError) as exc:
        raise _fail(exc)
    typer.echo(f"Scheduler starting | nightly={daemon.nightly_time} | db={target_db}")
    daemon.start()


# ── Entry point ───────────────────────────────────────────────────────────────

if __name__ == "__main__":
    app()
