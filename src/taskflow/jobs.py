"""Background jobs and the asyncio runner that triggers them on an interval."""

from __future__ import annotations

import asyncio
import datetime
import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional

from .notifications.delivery import NotificationDeliveryService
from .notifications.models import ProcessingReport

logger = logging.getLogger(__name__)

JobFactory = Callable[[], Awaitable[Any]]


async def run_delivery_job(
    service: NotificationDeliveryService,
    now: Optional[datetime.datetime] = None,
) -> ProcessingReport:
    """Run one delivery pass and log its summary."""

    report = await service.process_due_notifications(now)
    if report.errors:
        for error in report.errors:
            logger.warning("Delivery error: %s", error)
    logger.info(
        "Delivery run: %d delivered, %d retrying, %d failed, %d without devices, "
        "%d token(s) deactivated",
        report.processed_count,
        report.retried,
        report.failed,
        report.skipped_no_tokens,
        report.deactivated_tokens,
    )
    return report


async def run_cleanup_job(
    service: NotificationDeliveryService,
    now: Optional[datetime.datetime] = None,
) -> int:
    """Remove notifications past the retention window."""

    return await service.cleanup_sent_notifications(now)


class PeriodicJob:
    """Invoke a coroutine factory every ``interval`` until stopped.

    A failing run is logged and the next run still happens; nothing is kept
    in memory between runs.
    """

    def __init__(self, name: str, interval: timedelta, job: JobFactory):
        self._name = name
        self._interval = interval
        self._job = job
        self._task: asyncio.Task[None] | None = None
        self._shutdown = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> Any:
        try:
            return await self._job()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Job %s failed", self._name)
            return None

    def start(self) -> None:
        if self.running:
            return
        self._shutdown = False
        self._task = asyncio.create_task(self._loop(), name=f"job:{self._name}")
        logger.info(
            "Started job %s (every %ss)", self._name, self._interval.total_seconds()
        )

    async def _loop(self) -> None:
        try:
            while not self._shutdown:
                await self.run_once()
                await asyncio.sleep(self._interval.total_seconds())
        except asyncio.CancelledError:
            logger.debug("Job %s was cancelled", self._name)
            raise

    async def stop(self) -> None:
        self._shutdown = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None


__all__ = ["PeriodicJob", "run_delivery_job", "run_cleanup_job"]
