"""
Logging setup for the catalog CLI and scheduler.

``configure_logging()`` runs once per process, from the CLI entry point.
Library modules only ever call ``logging.getLogger(__name__)``.

With ``[logging] json_format = true`` each line is one JSON object::

    {"ts": "2025-06-01T02:00:04Z", "level": "INFO",
     "logger": "rate_catalog.pipeline.full_refresh", "msg": "...", "run_slug": "..."}

Values passed through ``extra=`` (e.g. ``run_slug``, ``record_id``) become
top-level keys.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from rate_catalog.config import LoggingConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# HTTP client chatter from the AI collaborators.
QUIET_LOGGERS = ("httpx", "httpcore")

_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime"}


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record; ``extra=`` fields are merged in."""

    def format(self, record: logging.LogRecord) -> str:
        line: dict = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
                LOG_DATE_FORMAT
            ),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        line.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        )
        if record.exc_info:
            line["exc"] = self.formatException(record.exc_info)
        return json.dumps(line, default=str)


def _handlers(config: "LoggingConfig", level: int) -> list[logging.Handler]:
    formatter = (
        JsonLineFormatter()
        if config.json_format
        else logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    )
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return handlers


def configure_logging(config: "LoggingConfig") -> None:
    """Install console (and optional file) handlers on the root logger.

    Replaces any handlers from an earlier call, so the scheduler can
    reconfigure after reloading config.
    """
    level = logging.getLevelName(config.level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(level=level, handlers=_handlers(config, level), force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
