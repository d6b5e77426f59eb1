"""Domain models representing tasks and repeating-task occurrences."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class TaskStatus(str, Enum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class RepeatFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(slots=True)
class Task:
    """One standalone task or one dated instance of a repeating series.

    ``start_date`` is a ``YYYY-MM-DD`` calendar string. ``due_date`` is the
    absolute deadline that reminders are computed from.
    """

    owner_id: str
    title: str
    start_date: str
    id: str = ""
    description: str = ""
    tags: set[str] = field(default_factory=set)
    priority: TaskPriority = TaskPriority.MEDIUM
    start_time: Optional[str] = None
    due_date: Optional[datetime.datetime] = None
    is_repeating: bool = False
    repeat_frequency: Optional[RepeatFrequency] = None
    repeat_end_date: Optional[str] = None
    series_id: Optional[str] = None
    status: TaskStatus = TaskStatus.TODO
    completed: bool = False
    completed_at: Optional[datetime.datetime] = None
    is_deleted: bool = False
    deleted_occurrences: set[str] = field(default_factory=set)
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None

    @property
    def is_scheduled(self) -> bool:
        """Return True when the task has a deadline to remind about."""

        return self.due_date is not None


@dataclass(slots=True)
class CompletionResult:
    """Outcome of toggling a task's completion state."""

    task: Task
    next_occurrence: Optional[Task] = None


__all__ = [
    "Task",
    "TaskStatus",
    "TaskPriority",
    "RepeatFrequency",
    "CompletionResult",
]
