"""
ASCII terminal formatters for CLI commands.

All formatters accept models / plain dicts and return multi-line strings
suitable for ``typer.echo()``.

No third-party dependencies (no ``rich``, no ``colorama``).

Trust column
------------
Rate tables show ``+V/-R`` (verifications / reports). Records that the
public listing would hide (``reports > verifications``) are tagged
``[HIDDEN]`` in the admin table.
"""

from __future__ import annotations

from datetime import datetime

from rate_catalog.models.alert import RateAlert
from rate_catalog.models.meta import RunMetadata
from rate_catalog.models.rate import RateRecord
from rate_catalog.models.recommendation import Recommendation


def _date_str(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d") if value else "never"


def _trust_str(record: RateRecord) -> str:
    return f"+{record.verification_count}/-{record.report_count}"


def _term_str(record: RateRecord) -> str:
    return f"{record.term}mo" if record.term else "-"


# ── Rate tables ───────────────────────────────────────────────────────────────


def format_rate_table(records: list[RateRecord], title: str = "Rates") -> str:
    """Format a public rate listing.

    Example::

           ID  Institution                     Type           APY     Rate   Min Dep  Term  Trust    Origin
        ----------------------------------------------------------------------------------------------------
           12  Barclays                        savings      4.65%    4.50%        $0     -  +0/-0    scraped
    """
    lines: list[str] = []
    lines.append("")
    lines.append(f"=== {title} ===")

    if not records:
        lines.append("")
        lines.append("  (no rates match -- try 'run-full-refresh' or loosen the filters)")
        return "\n".join(lines)

    lines.append("")
    header = (
        f"  {'ID':>5}  {'Institution':<30}  {'Type':<12}  {'APY':>7}  {'Rate':>7}  "
        f"{'Min Dep':>9}  {'Term':>5}  {'Trust':<7}  {'Origin':>9}"
    )
    lines.append(header)
    lines.append("  " + "-" * (len(header) - 2))
    for r in records:
        lines.append(
            f"  {r.record_id:>5}  {r.institution_name[:30]:<30}  {r.account_type.value:<12}  "
            f"{r.effective_yield:>6.2f}%  {r.rate:>6.2f}%  {_format_money(r.min_deposit):>9}  "
            f"{_term_str(r):>5}  {_trust_str(r):<7}  {r.source_origin.value:>9}"
        )
    lines.append("")
    lines.append(f"  {len(records)} rate(s)")
    return "\n".join(lines)


def format_admin_table(
    records: list[RateRecord],
    high_reports: list[RateRecord],
    threshold: int,
) -> str:
    """Format the moderation listing plus the high-reports triage bucket."""
    lines: list[str] = []
    lines.append("")
    lines.append("=== Moderation Queue ===")

    lines.append("")
    lines.append(f"  ---- High reports (>= {threshold}) ----")
    if not high_reports:
        lines.append("  (none)")
    for r in high_reports:
        lines.append(
            f"  #{r.record_id:<5} {r.institution_name[:30]:<30}  {r.account_type.value:<12}  "
            f"{r.effective_yield:>6.2f}%  reports={r.report_count}  "
            f"verifications={r.verification_count}"
        )

    lines.append("")
    lines.append("  ---- All records ----")
    if not records:
        lines.append("  (catalog is empty)")
        return "\n".join(lines)

    header = (
        f"  {'ID':>5}  {'Institution':<30}  {'Type':<12}  {'APY':>7}  "
        f"{'Trust':<7}  {'Origin':<9}  {'Created':<10}  Status"
    )
    lines.append(header)
    lines.append("  " + "-" * (len(header) - 2))
    for r in records:
        status = "[OK]" if r.is_visible else "[HIDDEN]"
        lines.append(
            f"  {r.record_id:>5}  {r.institution_name[:30]:<30}  {r.account_type.value:<12}  "
            f"{r.effective_yield:>6.2f}%  {_trust_str(r):<7}  {r.source_origin.value:<9}  "
            f"{_date_str(r.created_at):<10}  {status}"
        )
        if r.notes and r.notes.startswith("[AUTO-FLAGGED"):
            lines.append(f"         {r.notes[:90]}")
    return "\n".join(lines)


def format_admin_stats(stats: dict[str, int]) -> str:
    lines = ["", "=== Catalog Stats ==="]
    lines.append(f"  Total records:      {stats.get('total', 0)}")
    lines.append(
        f"  By origin:          community={stats.get('community', 0)}  "
        f"scraped={stats.get('scraped', 0)}  api={stats.get('api', 0)}"
    )
    lines.append(f"  Reported (>0):      {stats.get('reported', 0)}")
    lines.append(f"  High reports:       {stats.get('high_reports', 0)}")
    lines.append(f"  Hidden from public: {stats.get('hidden', 0)}")
    return "\n".join(lines)


# ── Recommendations ───────────────────────────────────────────────────────────


def format_recommendations(recommendations: list[Recommendation], account_type: str) -> str:
    """Format ranked recommendations with their reasoning lines.

    The ``By`` column shows whether the AI ranker or the rule-based scorer
    produced the list.
    """
    lines: list[str] = []
    lines.append("")
    lines.append(f"=== Recommendations: {account_type} ===")

    if not recommendations:
        lines.append("")
        lines.append("  (no visible rates match these preferences)")
        return "\n".join(lines)

    lines.append(f"  Ranked by: {recommendations[0].ranked_by}")
    lines.append("")
    header = f"  {'#':>3}  {'Institution':<30}  {'APY':>7}  {'Score':>6}  {'Trust':<7}"
    lines.append(header)
    lines.append("  " + "-" * (len(header) - 2))
    for rank, rec in enumerate(recommendations, start=1):
        r = rec.record
        lines.append(
            f"  {rank:>3}  {r.institution_name[:30]:<30}  {r.effective_yield:>6.2f}%  "
            f"{rec.score:>6.1f}  {_trust_str(r):<7}"
        )
        lines.append(f"       {rec.reasoning}")
    return "\n".join(lines)


# ── Alerts ────────────────────────────────────────────────────────────────────


def format_alerts(alerts: list[RateAlert], email: str) -> str:
    lines = ["", f"=== Rate Alerts: {email} ==="]
    if not alerts:
        lines.append("")
        lines.append("  (no active alerts -- create one with 'create-alert')")
        return "\n".join(lines)

    lines.append("")
    header = f"  {'ID':>5}  {'Type':<12}  {'Target':>7}  {'Frequency':<9}  Last notified"
    lines.append(header)
    lines.append("  " + "-" * (len(header) - 2))
    for a in alerts:
        lines.append(
            f"  {a.alert_id or 0:>5}  {a.account_type.value:<12}  {a.target_rate:>6.2f}%  "
            f"{a.frequency.value:<9}  {_date_str(a.last_notified_at)}"
        )
    return "\n".join(lines)


# ── Run history ───────────────────────────────────────────────────────────────


def format_run_history(runs: list[RunMetadata]) -> str:
    lines = ["", "=== Recent Runs ==="]
    if not runs:
        lines.append("")
        lines.append("  (no runs recorded yet)")
        return "\n".join(lines)

    lines.append("")
    header = (
        f"  {'Stage':<14}  {'Status':<8}  {'Rows':>6}  {'Started':<19}  {'Duration':>9}"
    )
    lines.append(header)
    lines.append("  " + "-" * (len(header) - 2))
    for run in runs:
        started = run.started_at.strftime("%Y-%m-%d %H:%M:%S")
        if run.finished_at is not None:
            duration = f"{(run.finished_at - run.started_at).total_seconds():.1f}s"
        else:
            duration = "running"
        lines.append(
            f"  {run.pipeline_stage:<14}  {run.status:<8}  {run.rows_processed:>6}  "
            f"{started:<19}  {duration:>9}"
        )
        if run.error_message:
            lines.append(f"    error: {run.error_message[:100]}")
    return "\n".join(lines)


def _format_money(value: float) -> str:
    return f"${value:,.0f}" if value == int(value) else f"${value:,.2f}"
