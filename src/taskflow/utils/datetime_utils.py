"""Timestamp and calendar-date normalization used by the stores and services.

Timestamps are persisted as ISO 8601 strings in UTC. Task dates are plain
``YYYY-MM-DD`` calendar strings with no time zone conversion, so they order
correctly as strings.
"""

from __future__ import annotations

import datetime
from typing import Optional

from dateutil import parser as dateutil_parser


def utc_now() -> datetime.datetime:
    """Return the current aware UTC datetime."""

    return datetime.datetime.now(datetime.timezone.utc)


def ensure_utc(value: datetime.datetime) -> datetime.datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


def format_timestamp(value: Optional[datetime.datetime]) -> Optional[str]:
    if value is None:
        return None
    return ensure_utc(value).isoformat(timespec="microseconds")


def parse_timestamp(value: Optional[str]) -> Optional[datetime.datetime]:
    """Parse a stored timestamp and normalize it to UTC.

    Returns None for empty or unparseable values.
    """

    if not value:
        return None
    try:
        parsed = dateutil_parser.isoparse(value)
    except ValueError:
        return None
    return ensure_utc(parsed)


def normalize_calendar_date(value: str | datetime.date) -> str:
    """Return the ``YYYY-MM-DD`` form of a date or date-like string."""

    if isinstance(value, datetime.datetime):
        return value.date().isoformat()
    if isinstance(value, datetime.date):
        return value.isoformat()
    return value.split("T", 1)[0].strip()


def parse_calendar_date(value: str | datetime.date) -> datetime.date:
    return datetime.date.fromisoformat(normalize_calendar_date(value))


def today_iso(now: Optional[datetime.datetime] = None) -> str:
    """Return today's calendar date (UTC unless ``now`` carries a zone)."""

    reference = now or utc_now()
    return reference.date().isoformat()


__all__ = [
    "utc_now",
    "ensure_utc",
    "format_timestamp",
    "parse_timestamp",
    "normalize_calendar_date",
    "parse_calendar_date",
    "today_iso",
]
