"""Schedule deadline reminders for tasks with a due date."""

from __future__ import annotations

import datetime
import logging
from collections import Counter
from datetime import timedelta
from typing import TYPE_CHECKING, Optional, Sequence

from ..config import Settings
from ..tasks.models import Task
from ..utils.datetime_utils import ensure_utc, utc_now
from .models import (
    Notification,
    NotificationPayload,
    NotificationStats,
    NotificationType,
)

if TYPE_CHECKING:
    from ..repository import TaskflowRepository

logger = logging.getLogger(__name__)

DEFAULT_REMINDER_OFFSETS: tuple[int, ...] = (1440, 60, 15)
REMINDER_TITLE = "Task Reminder"
REMINDER_ICON = "📋"


def notification_id(task_id: str, offset_minutes: int) -> str:
    """Deterministic id so re-scheduling the same offset overwrites the record."""

    return f"notif_{task_id}_{offset_minutes}min"


def format_reminder_time(minutes: int) -> str:
    if minutes < 60:
        return f"{minutes} minute{'' if minutes == 1 else 's'}"
    if minutes < 1440:
        hours = minutes // 60
        return f"{hours} hour{'' if hours == 1 else 's'}"
    days = minutes // 1440
    return "tomorrow" if days == 1 else f"in {days} days"


def generate_reminder_message(title: str, minutes: int) -> str:
    time_text = format_reminder_time(minutes)
    if minutes < 60:
        return f'"{title}" is due in {time_text}! ⏰'
    if minutes < 1440:
        return f'"{title}" is due in {time_text} 📅'
    return f"Don't forget: \"{title}\" is due {time_text} 📋"


class NotificationScheduler:
    """Persist one reminder per offset before a task's deadline."""

    def __init__(self, repository: TaskflowRepository, settings: Settings | None = None):
        self._repository = repository
        self._default_offsets: tuple[int, ...] = (
            tuple(settings.reminder_offsets_minutes)
            if settings is not None
            else DEFAULT_REMINDER_OFFSETS
        )

    def build_notifications(
        self,
        task: Task,
        offsets: Optional[Sequence[int]] = None,
        now: Optional[datetime.datetime] = None,
    ) -> list[Notification]:
        if task.due_date is None:
            return []

        reference = ensure_utc(now or utc_now())
        due = ensure_utc(task.due_date)
        notifications: list[Notification] = []

        for offset in offsets if offsets is not None else self._default_offsets:
            scheduled_for = due - timedelta(minutes=offset)
            if scheduled_for <= reference:
                logger.debug(
                    "Skipping past reminder (%d min) for task %s", offset, task.id
                )
                continue
            notifications.append(
                Notification(
                    notification_id=notification_id(task.id, offset),
                    owner_id=task.owner_id,
                    task_id=task.id,
                    type=NotificationType.DEADLINE_REMINDER,
                    scheduled_for=scheduled_for,
                    payload=NotificationPayload(
                        title=REMINDER_TITLE,
                        body=generate_reminder_message(task.title, offset),
                        data={
                            "taskId": task.id,
                            "type": NotificationType.DEADLINE_REMINDER.value,
                            "reminderMinutes": str(offset),
                        },
                        icon=REMINDER_ICON,
                    ),
                    created_at=reference,
                )
            )
        return notifications

    async def schedule_task_notifications(
        self,
        task: Task,
        offsets: Optional[Sequence[int]] = None,
        now: Optional[datetime.datetime] = None,
    ) -> list[Notification]:
        """Create reminders for ``task`` in one atomic batch.

        A task without a due date is a no-op. Offsets whose reminder time is
        already in the past are skipped.
        """

        if task.due_date is None:
            logger.debug("No deadline for task %s", task.id)
            return []

        notifications = self.build_notifications(task, offsets, now)
        if not notifications:
            return []

        batch = self._repository.batch()
        for notification in notifications:
            batch.set_notification(notification)
        await self._repository.commit(batch)

        logger.info(
            "Scheduled %d reminder(s) for task %s", len(notifications), task.id
        )
        return notifications

    async def cancel_task_notifications(self, owner_id: str, task_id: str) -> int:
        """Delete every unsent reminder of a task; sent ones stay as history."""

        pending = await self._repository.find_unsent_for_task(owner_id, task_id)
        if not pending:
            return 0

        batch = self._repository.batch()
        for notification in pending:
            batch.delete_notification(notification.notification_id)
        await self._repository.commit(batch)

        logger.info("Cancelled %d notification(s) for task %s", len(pending), task_id)
        return len(pending)

    async def reschedule_task_notifications(
        self,
        task: Task,
        offsets: Optional[Sequence[int]] = None,
        now: Optional[datetime.datetime] = None,
    ) -> list[Notification]:
        """Replace a task's pending reminders after its due date changed."""

        await self.cancel_task_notifications(task.owner_id, task.id)
        return await self.schedule_task_notifications(task, offsets, now)

    async def get_notification_stats(
        self, owner_id: str, now: Optional[datetime.datetime] = None
    ) -> NotificationStats:
        reference = ensure_utc(now or utc_now())
        notifications = await self._repository.list_notifications(owner_id)
        types = Counter(n.type.value for n in notifications)

        return NotificationStats(
            total=len(notifications),
            sent=sum(1 for n in notifications if n.sent),
            pending=sum(
                1 for n in notifications if not n.sent and n.scheduled_for > reference
            ),
            failed=sum(1 for n in notifications if n.sent and n.error),
            type_breakdown={t.value: types.get(t.value, 0) for t in NotificationType},
        )


__all__ = [
    "NotificationScheduler",
    "notification_id",
    "format_reminder_time",
    "generate_reminder_message",
    "DEFAULT_REMINDER_OFFSETS",
]
