"""Logging handlers and process-wide logging configuration."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .config import Settings
from .logging_settings import parse_logging_settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class DateStampedFileHandler(logging.FileHandler):
    """File handler that stores logs under date-stamped directories (UTC)."""

    def __init__(
        self,
        directory: str | Path = "logs/app",
        *,
        prefix: str = "taskflow",
        encoding: str | None = "utf-8",
        mode: str = "a",
        delay: bool = False,
        errors: Optional[str] = None,
        current_time: datetime | None = None,
    ) -> None:
        timestamp = (current_time or datetime.now(timezone.utc)).astimezone(
            timezone.utc
        )
        base_dir = Path(directory).resolve()
        date_folder = timestamp.strftime("%Y-%m-%d")
        file_name = f"{prefix}_{timestamp.strftime('%Y-%m-%d_%H-%M-%S')}_UTC.log"
        log_path = base_dir / date_folder / file_name

        log_path.parent.mkdir(parents=True, exist_ok=True)
        super().__init__(
            log_path,
            mode=mode,
            encoding=encoding,
            delay=delay,
            errors=errors,
        )


def cleanup_old_logs(
    log_directories: list[str | Path],
    retention_hours: int,
    logger: logging.Logger | None = None,
    *,
    now: datetime | None = None,
) -> tuple[int, int]:
    """
    Delete log files older than the specified retention period.

    Args:
        log_directories: Directories to clean (searched recursively for *.log)
        retention_hours: Files older than this many hours are deleted (0 = disabled)
        logger: Optional logger for reporting cleanup activity
        now: Reference time, defaults to the current UTC time

    Returns:
        Tuple of (files_deleted, errors_encountered)
    """
    if retention_hours <= 0:
        return (0, 0)

    cutoff_time = (now or datetime.now(timezone.utc)) - timedelta(
        hours=retention_hours
    )
    files_deleted = 0
    errors = 0

    for directory in log_directories:
        dir_path = Path(directory).resolve()
        if not dir_path.exists():
            continue

        for log_file in dir_path.rglob("*.log"):
            try:
                mtime = datetime.fromtimestamp(
                    log_file.stat().st_mtime, tz=timezone.utc
                )
                if mtime < cutoff_time:
                    log_file.unlink()
                    files_deleted += 1
                    if logger:
                        logger.debug("Deleted old log file: %s", log_file)
            except OSError as exc:
                errors += 1
                if logger:
                    logger.warning("Failed to delete %s: %s", log_file, exc)

        # Empty date folders left behind
        for date_dir in dir_path.iterdir():
            if date_dir.is_dir() and not any(date_dir.iterdir()):
                try:
                    date_dir.rmdir()
                except OSError:
                    errors += 1

    if logger and files_deleted > 0:
        logger.info(
            "Log cleanup complete: %d file(s) deleted, %d error(s) encountered",
            files_deleted,
            errors,
        )

    return (files_deleted, errors)


def configure_logging(settings: Settings) -> None:
    """Route log records to the console and the date-stamped job log.

    The ``jobs`` level gates the file under ``settings.log_directory``; with
    ``jobs = off`` no file is created. Old job logs are pruned afterwards.
    """

    # Load .env first so TASKFLOW_LOG_* overrides are visible
    load_dotenv()

    log_settings = parse_logging_settings(settings.log_settings_path)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    handlers: list[logging.Handler] = []

    if log_settings.terminal_level is not None:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_settings.terminal_level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    if log_settings.file_enabled:
        file_handler = DateStampedFileHandler(settings.log_directory)
        file_handler.setLevel(log_settings.jobs_level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=log_settings.root_level,
        handlers=handlers,
        force=True,
    )

    cleanup_old_logs(
        [settings.log_directory],
        log_settings.retention_hours,
        logger=logging.getLogger(__name__),
    )


__all__ = [
    "DateStampedFileHandler",
    "cleanup_old_logs",
    "configure_logging",
    "LOG_FORMAT",
]
