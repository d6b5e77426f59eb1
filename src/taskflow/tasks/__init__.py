"""Task domain package: models, recurrence rules and occurrence generation."""

from .generator import OccurrenceGenerator, find_templates
from .models import CompletionResult, RepeatFrequency, Task, TaskPriority, TaskStatus
from .recurrence import advance_date, occurrence_id, series_key

__all__ = [
    "Task",
    "TaskStatus",
    "TaskPriority",
    "RepeatFrequency",
    "CompletionResult",
    "OccurrenceGenerator",
    "find_templates",
    "advance_date",
    "occurrence_id",
    "series_key",
]
