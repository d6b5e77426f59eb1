"""Logging levels for the job process.

Two outputs are configurable: the console (``terminal``) and the date-stamped
job log file (``jobs``). Each accepts ``debug``, ``info``, ``warning``,
``error`` or ``off``. ``retention_hours`` controls how long job log files are
kept; ``0`` keeps them forever.

Values come from ``logging_settings.conf`` (``key = value`` lines, ``#``
comments) and can be overridden per deployment with ``TASKFLOW_LOG_TERMINAL``,
``TASKFLOW_LOG_JOBS`` and ``TASKFLOW_LOG_RETENTION_HOURS``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

LEVELS: dict[str, int | None] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "off": None,
}

DEFAULT_LEVEL = logging.INFO
DEFAULT_RETENTION_HOURS = 48

_ENV_OVERRIDES = {
    "terminal": "TASKFLOW_LOG_TERMINAL",
    "jobs": "TASKFLOW_LOG_JOBS",
    "retention_hours": "TASKFLOW_LOG_RETENTION_HOURS",
}


@dataclass(frozen=True)
class LoggingSettings:
    terminal_level: int | None = DEFAULT_LEVEL
    jobs_level: int | None = DEFAULT_LEVEL
    retention_hours: int = DEFAULT_RETENTION_HOURS

    @property
    def file_enabled(self) -> bool:
        return self.jobs_level is not None

    @property
    def root_level(self) -> int:
        """Lowest enabled level, so neither output is starved by the root logger."""

        enabled = [
            level for level in (self.terminal_level, self.jobs_level) if level is not None
        ]
        return min(enabled) if enabled else logging.WARNING


def _level(value: str, fallback: int | None) -> int | None:
    return LEVELS.get(value.strip().lower(), fallback)


def _retention(value: str) -> int:
    try:
        return max(0, int(value))
    except ValueError:
        return DEFAULT_RETENTION_HOURS


def _read_file(path: Path) -> dict[str, str]:
    values: dict[str, str] = {}
    if not path.exists():
        return values
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip().lower()] = value.strip()
    return values


def parse_logging_settings(
    path: Path, environ: Optional[Mapping[str, str]] = None
) -> LoggingSettings:
    """Combine the settings file with environment overrides.

    Unknown keys are ignored, unknown levels fall back to ``info`` and an
    unparseable retention falls back to 48 hours.
    """

    values = _read_file(path)
    env = os.environ if environ is None else environ
    for key, variable in _ENV_OVERRIDES.items():
        if env.get(variable):
            values[key] = env[variable]

    return LoggingSettings(
        terminal_level=_level(values.get("terminal", "info"), DEFAULT_LEVEL),
        jobs_level=_level(values.get("jobs", "info"), DEFAULT_LEVEL),
        retention_hours=_retention(
            values.get("retention_hours", str(DEFAULT_RETENTION_HOURS))
        ),
    )


__all__ = ["LoggingSettings", "parse_logging_settings", "LEVELS"]
