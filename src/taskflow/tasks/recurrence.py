"""Date arithmetic and series identity for repeating tasks."""

from __future__ import annotations

import datetime
import hashlib
from typing import Optional

from dateutil.relativedelta import relativedelta

from ..utils.datetime_utils import normalize_calendar_date, parse_calendar_date
from .models import RepeatFrequency, Task, TaskStatus

_STEPS: dict[RepeatFrequency, relativedelta] = {
    RepeatFrequency.DAILY: relativedelta(days=1),
    RepeatFrequency.WEEKLY: relativedelta(days=7),
    # relativedelta clamps to the last day of shorter months (Jan 31 -> Feb 28/29)
    RepeatFrequency.MONTHLY: relativedelta(months=1),
}


def advance_date(value: str | datetime.date, frequency: RepeatFrequency) -> str:
    """Return the calendar date one repetition step after ``value``."""

    advanced = parse_calendar_date(value) + _STEPS[RepeatFrequency(frequency)]
    return advanced.isoformat()


def legacy_series_key(owner_id: str, title: str, frequency: RepeatFrequency) -> str:
    digest = hashlib.sha1(
        f"{owner_id}\x1f{title}\x1f{RepeatFrequency(frequency).value}".encode("utf-8")
    ).hexdigest()
    return f"series_{digest[:20]}"


def series_key(task: Task) -> Optional[str]:
    """Stable identity of the series a task belongs to.

    Rows without a stored ``series_id`` are grouped by
    ``(owner_id, title, repeat_frequency)``.
    """

    if task.series_id:
        return task.series_id
    if task.repeat_frequency is None:
        return None
    return legacy_series_key(task.owner_id, task.title, task.repeat_frequency)


def occurrence_id(key: str, date: str) -> str:
    """Deterministic id for the instance of series ``key`` on ``date``."""

    digest = hashlib.sha1(
        f"{key}|{normalize_calendar_date(date)}".encode("utf-8")
    ).hexdigest()
    return f"occ_{digest[:24]}"


def should_create_next_occurrence(task: Task) -> bool:
    """True when the step after ``task.start_date`` is still inside the series."""

    if not task.is_repeating or task.repeat_frequency is None:
        return False
    if task.repeat_end_date:
        next_date = advance_date(task.start_date, task.repeat_frequency)
        return next_date <= normalize_calendar_date(task.repeat_end_date)
    return True


def build_occurrence(
    template: Task, date: str, *, now: Optional[datetime.datetime] = None
) -> Task:
    """Clone ``template`` into a fresh, incomplete instance dated ``date``."""

    key = series_key(template)
    if key is None:
        raise ValueError(f"Task {template.id} is not part of a repeating series")
    return Task(
        id=occurrence_id(key, date),
        owner_id=template.owner_id,
        title=template.title,
        description=template.description,
        tags=set(template.tags),
        priority=template.priority,
        start_date=normalize_calendar_date(date),
        start_time=template.start_time,
        is_repeating=True,
        repeat_frequency=template.repeat_frequency,
        repeat_end_date=template.repeat_end_date,
        series_id=key,
        status=TaskStatus.TODO,
        completed=False,
        created_at=now,
        updated_at=now,
    )


__all__ = [
    "advance_date",
    "legacy_series_key",
    "series_key",
    "occurrence_id",
    "should_create_next_occurrence",
    "build_occurrence",
]
