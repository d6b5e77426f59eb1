"""Materialize today's instance of every repeating-task series."""

from __future__ import annotations

import datetime
import logging
from collections import defaultdict
from typing import TYPE_CHECKING, Iterable, Optional

from ..errors import StoreError, TaskNotFound
from ..utils.datetime_utils import normalize_calendar_date, today_iso, utc_now
from .models import CompletionResult, Task, TaskStatus
from .recurrence import (
    advance_date,
    build_occurrence,
    series_key,
    should_create_next_occurrence,
)

if TYPE_CHECKING:
    from ..repository import TaskflowRepository

logger = logging.getLogger(__name__)


def find_templates(tasks: Iterable[Task]) -> list[Task]:
    """Return the earliest-dated instance of every repeating series."""

    series: dict[str, list[Task]] = defaultdict(list)
    for task in tasks:
        if not task.is_repeating or task.repeat_frequency is None or not task.start_date:
            continue
        key = series_key(task)
        if key is not None:
            series[key].append(task)

    templates: list[Task] = []
    for members in series.values():
        members.sort(key=lambda t: (normalize_calendar_date(t.start_date), t.id))
        templates.append(members[0])
    return templates


def _is_eligible_today(template: Task, today: str) -> bool:
    start = normalize_calendar_date(template.start_date)
    if today < start:
        return False
    if not should_create_next_occurrence(template):
        return False
    if template.repeat_end_date and today > normalize_calendar_date(
        template.repeat_end_date
    ):
        return False
    return True


def _exists_in_memory(tasks: Iterable[Task], template: Task, today: str) -> bool:
    key = series_key(template)
    for task in tasks:
        if normalize_calendar_date(task.start_date) != today:
            continue
        if task.is_repeating and series_key(task) == key:
            return True
        if (
            task.is_repeating
            and task.owner_id == template.owner_id
            and task.title == template.title
            and task.repeat_frequency == template.repeat_frequency
        ):
            return True
    return False


class OccurrenceGenerator:
    """Create missing occurrences and successors of repeating tasks."""

    def __init__(self, repository: TaskflowRepository):
        self._repository = repository

    async def _prepare_occurrence(
        self,
        tasks: list[Task],
        template: Task,
        day: str,
        now: datetime.datetime,
    ) -> Task | None:
        """Return today's instance for ``template``, or None when none is due."""

        if template.repeat_frequency is None:
            return None
        if not _is_eligible_today(template, day):
            return None
        if day in template.deleted_occurrences:
            logger.debug(
                "Occurrence %s of '%s' was deleted by its owner, skipping",
                day,
                template.title,
            )
            return None
        if _exists_in_memory(tasks, template, day):
            return None

        existing = await self._repository.find_occurrence(
            template.owner_id,
            template.title,
            day,
            template.repeat_frequency,
        )
        if existing is not None:
            return None
        return build_occurrence(template, day, now=now)

    async def generate_missing_occurrences(
        self,
        tasks: list[Task],
        today: Optional[str | datetime.date] = None,
    ) -> list[str]:
        """Create today's instance for every series that lacks one.

        ``tasks`` must be the owner's complete task set, soft-deleted rows
        included, so that deleted instances still count as existing. Returns
        the dates of the instances actually created.
        """

        day = normalize_calendar_date(today) if today is not None else today_iso()
        now = utc_now()
        batch = self._repository.batch()
        planned: dict[str, str] = {}

        for template in find_templates(tasks):
            try:
                occurrence = await self._prepare_occurrence(tasks, template, day, now)
            except Exception:
                logger.exception(
                    "Error preparing occurrence %s for task %s", day, template.id
                )
                continue
            if occurrence is None:
                continue

            batch.create_task_if_absent(occurrence)
            planned[occurrence.id] = day

        if not planned:
            return []

        try:
            await self._repository.commit(batch)
        except StoreError:
            logger.exception("Error creating repeating-task occurrences for %s", day)

        created = [planned[task_id] for task_id in batch.created if task_id in planned]
        if created:
            logger.info(
                "Created %d repeating-task occurrence(s) for %s", len(created), day
            )
        return created

    async def load_and_generate(
        self,
        owner_id: str,
        today: Optional[str | datetime.date] = None,
    ) -> list[str]:
        """Read an owner's tasks and fill in today's missing occurrences."""

        tasks = await self._repository.list_tasks(owner_id)
        return await self.generate_missing_occurrences(tasks, today)

    async def complete_task(
        self,
        owner_id: str,
        task_id: str,
        *,
        today: Optional[str | datetime.date] = None,
        now: Optional[datetime.datetime] = None,
    ) -> CompletionResult:
        """Toggle a task between completed and todo.

        Completing a repeating instance creates its successor right away when
        the next date is still inside the series and not in the past.
        """

        task = await self._repository.get_task(owner_id, task_id)
        if task is None:
            raise TaskNotFound(f"Task {task_id} not found")

        moment = now or utc_now()
        day = normalize_calendar_date(today) if today is not None else today_iso(moment)
        completing = task.status != TaskStatus.COMPLETED

        task.status = TaskStatus.COMPLETED if completing else TaskStatus.TODO
        task.completed = completing
        task.completed_at = moment if completing else None
        task.updated_at = moment

        batch = self._repository.batch()
        batch.update_task(
            owner_id,
            task_id,
            status=task.status,
            completed=task.completed,
            completed_at=task.completed_at,
            updated_at=task.updated_at,
        )

        successor: Task | None = None
        if (
            completing
            and task.repeat_frequency is not None
            and should_create_next_occurrence(task)
        ):
            next_date = advance_date(task.start_date, task.repeat_frequency)
            if next_date >= day:
                successor = build_occurrence(task, next_date, now=moment)
                batch.create_task_if_absent(successor)

        await self._repository.commit(batch)

        if successor is not None and successor.id not in batch.created:
            logger.debug("Successor %s of task %s already exists", successor.id, task_id)
            successor = None
        elif successor is not None:
            logger.info(
                "Created next occurrence of '%s' on %s", task.title, successor.start_date
            )
        return CompletionResult(task=task, next_occurrence=successor)

    async def delete_occurrence(
        self,
        owner_id: str,
        task_id: str,
        *,
        now: Optional[datetime.datetime] = None,
    ) -> Task:
        """Soft-delete one instance and remember its date on the series template."""

        task = await self._repository.get_task(owner_id, task_id)
        if task is None:
            raise TaskNotFound(f"Task {task_id} not found")

        moment = now or utc_now()
        batch = self._repository.batch()
        task.is_deleted = True
        task.updated_at = moment

        if task.is_repeating and task.repeat_frequency is not None:
            key = series_key(task)
            siblings = [
                t
                for t in await self._repository.list_tasks(owner_id)
                if t.is_repeating and series_key(t) == key
            ]
            template = next(
                (t for t in find_templates(siblings) if series_key(t) == key), task
            )
            date = normalize_calendar_date(task.start_date)
            if template.id == task.id:
                template = task
            template.deleted_occurrences.add(date)
            if template is not task:
                batch.update_task(
                    owner_id,
                    template.id,
                    deleted_occurrences=template.deleted_occurrences,
                    updated_at=moment,
                )

        batch.update_task(
            owner_id,
            task_id,
            is_deleted=True,
            deleted_occurrences=task.deleted_occurrences,
            updated_at=moment,
        )
        await self._repository.commit(batch)
        return task


__all__ = ["OccurrenceGenerator", "find_templates"]
