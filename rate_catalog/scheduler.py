"""Scheduler daemon for the nightly refresh and hourly alert sweep.

No external scheduler library is required; it uses stdlib ``time``,
``signal``, and ``subprocess`` only.

Typical usage via the CLI::

    ratecat start-scheduler --nightly-time 02:00

Or import directly::

    from rate_catalog.scheduler import SchedulerDaemon
    daemon = SchedulerDaemon(db_path="data/db/rate_catalog.db")
    daemon.start()  # blocks until Ctrl-C

Jobs executed:
  - **Hourly**  - ``check-alerts`` (notify subscribers whose targets are met)
  - **Nightly** - ``run-full-refresh`` (reset-trust merge of every scraped
                  rate), at *nightly_time* (local HH:MM clock).

Each job is invoked as a subprocess (the installed CLI), so each run has
its own process, logging, and exit code. A failed job is logged but does
not stop the daemon.
"""

from __future__ import annotations

import logging
import platform
import signal
import subprocess
import sys
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

log = logging.getLogger(__name__)

JOB_TIMEOUT_SECONDS = 3600


# ── Helpers ───────────────────────────────────────────────────────────────────


def _find_cli_exe() -> str:
    """Locate the rate-catalog CLI executable inside the active virtual env.

    Tries ``ratecat`` (alias) before ``rate-catalog``, and adds ``.exe``
    suffix on Windows. Raises ``RuntimeError`` if neither is found.
    """
    scripts_dir = Path(sys.executable).parent
    candidates = (
        ["ratecat.exe", "rate-catalog.exe", "ratecat", "rate-catalog"]
        if platform.system() == "Windows"
        else ["ratecat", "rate-catalog"]
    )
    for name in candidates:
        candidate = scripts_dir / name
        if candidate.exists():
            return str(candidate)
    raise RuntimeError(
        f"Could not find rate-catalog executable in {scripts_dir}. "
        "Run: pip install -e ."
    )


def next_nightly_run(nightly_time: str, now: Optional[datetime] = None) -> datetime:
    """Return the next local datetime matching *nightly_time* (``HH:MM``).

    Raises:
        ValueError: If *nightly_time* is not a valid ``HH:MM`` string.
    """
    try:
        hour, minute = (int(p) for p in nightly_time.split(":"))
    except ValueError:
        raise ValueError(f"nightly_time must be HH:MM, got '{nightly_time}'.") from None
    now = now or datetime.now()
    candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


# ── Daemon ────────────────────────────────────────────────────────────────────


class SchedulerDaemon:
    """Runs ``check-alerts`` every hour and ``run-full-refresh`` once a night.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file, forwarded to every job.
    nightly_time:
        Local 24-hour ``HH:MM`` time to fire the full refresh.
    skip_initial_alerts:
        When *True*, skip the immediate alert sweep on daemon start and wait
        for the first scheduled slot (1 hour from now).
    config_path:
        Optional TOML config forwarded to every job.
    cli_exe:
        Full path to the CLI executable. Auto-detected from the active
        virtual environment when *None*.
    """

    def __init__(
        self,
        db_path: str,
        nightly_time: str = "02:00",
        skip_initial_alerts: bool = False,
        config_path: Optional[str] = None,
        cli_exe: Optional[str] = None,
    ) -> None:
        next_nightly_run(nightly_time)  # validate early
        self.db_path = db_path
        self.nightly_time = nightly_time
        self.skip_initial_alerts = skip_initial_alerts
        self.config_path = config_path
        self.cli_exe = cli_exe or _find_cli_exe()
        self._running = False

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _job_args(self, command: str) -> list[str]:
        args = [command, "--db-path", self.db_path]
        if self.config_path:
            args += ["--config", self.config_path]
        return args

    def _run_cmd(self, args: list[str], label: str) -> bool:
        """Run a CLI sub-command. Returns ``True`` on success (exit code 0)."""
        cmd = [self.cli_exe] + args
        log.info("[%s] Running: %s", label, " ".join(cmd))
        try:
            result = subprocess.run(cmd, timeout=JOB_TIMEOUT_SECONDS)
            if result.returncode == 0:
                log.info("[%s] Completed successfully (exit 0).", label)
                return True
            log.error("[%s] Exited with code %d.", label, result.returncode)
            return False
        except subprocess.TimeoutExpired:
            log.error("[%s] Timed out after %d s.", label, JOB_TIMEOUT_SECONDS)
            return False
        except OSError as exc:
            log.error("[%s] Could not start: %s", label, exc, exc_info=True)
            return False

    # ── Jobs ──────────────────────────────────────────────────────────────────

    def run_alert_check(self) -> bool:
        log.info(
            "=== Alert check starting at %s ===",
            datetime.now().isoformat(timespec="seconds"),
        )
        return self._run_cmd(self._job_args("check-alerts"), "check-alerts")

    def run_nightly(self) -> bool:
        log.info(
            "=== Nightly full refresh starting at %s ===",
            datetime.now().isoformat(timespec="seconds"),
        )
        return self._run_cmd(self._job_args("run-full-refresh"), "run-full-refresh")

    # ── Main loop ─────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Start the daemon. Blocks until Ctrl-C (or SIGTERM on Linux/macOS)."""
        next_alerts: datetime = (
            datetime.now() + timedelta(hours=1)
            if self.skip_initial_alerts
            else datetime.now()
        )
        next_nightly: datetime = next_nightly_run(self.nightly_time)

        log.info(
            "Scheduler started.  nightly_time=%s  db=%s",
            self.nightly_time,
            self.db_path,
        )
        log.info(
            "Next alert check: %s  |  Next full refresh: %s",
            next_alerts.isoformat(timespec="seconds"),
            next_nightly.isoformat(timespec="seconds"),
        )

        self._running = True

        def _shutdown(signum, frame):  # noqa: ANN001
            log.info("Signal %d received, stopping scheduler.", signum)
            self._running = False

        signal.signal(signal.SIGINT, _shutdown)
        if platform.system() != "Windows":
            signal.signal(signal.SIGTERM, _shutdown)

        # Tick every 30 s
        while self._running:
            now = datetime.now()

            if now >= next_nightly:
                self.run_nightly()
                next_nightly = next_nightly_run(self.nightly_time)
                log.info(
                    "Next full refresh scheduled: %s",
                    next_nightly.isoformat(timespec="seconds"),
                )

            if now >= next_alerts:
                self.run_alert_check()
                next_alerts = datetime.now() + timedelta(hours=1)
                log.info(
                    "Next alert check scheduled: %s",
                    next_alerts.isoformat(timespec="seconds"),
                )

            time.sleep(30)

        log.info("Scheduler stopped.")
