"""Deliver due notifications and prune dead push endpoints.

One call to :meth:`NotificationDeliveryService.process_due_notifications` is a
stateless batch run. Waiting between retries is persisted as the record's
``scheduled_for``, so an external timer invoking the run periodically is all
that drives the state machine::

    scheduled -> delivered | retry-pending
    retry-pending -> delivered | retry-pending | failed (terminal)
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Optional, Sequence

from ..config import Settings
from ..errors import NoActiveDeviceTokens, PushDeliveryError, StoreError
from ..utils.datetime_utils import ensure_utc, utc_now
from .devices import DeviceTokenRegistry
from .models import Notification, NotificationPayload, ProcessingReport, SendResult
from .push import PushProvider, is_permanent_token_error

if TYPE_CHECKING:
    from ..repository import TaskflowRepository

logger = logging.getLogger(__name__)

NO_ACTIVE_TOKENS_ERROR = "no active device tokens"


def apply_retry_policy(
    notification: Notification,
    error: str,
    now: datetime.datetime,
    *,
    max_retries: int = 3,
    retry_delay: timedelta = timedelta(minutes=5),
) -> dict[str, Any]:
    """Return the field updates for a delivery attempt that reached no device.

    The retry counter is bumped; below ``max_retries`` the record is pushed
    ``retry_delay`` into the future, otherwise it is closed as failed. The
    counter never exceeds ``max_retries``.
    """

    retry_count = min(notification.retry_count + 1, max_retries)
    if retry_count < max_retries:
        return {
            "retry_count": retry_count,
            "error": error,
            "scheduled_for": now + retry_delay,
        }
    return {
        "retry_count": retry_count,
        "sent": True,
        "sent_at": now,
        "error": f"Failed after {retry_count} retries: {error}",
    }


@dataclass(slots=True)
class _Outcome:
    notification: Notification
    updates: dict[str, Any]
    delivered: bool = False
    no_tokens: bool = False
    error: Optional[str] = None
    invalid_tokens: list[str] = field(default_factory=list)


class NotificationDeliveryService:
    """Send scheduled reminders through a push provider."""

    def __init__(
        self,
        repository: TaskflowRepository,
        provider: PushProvider,
        settings: Settings,
    ):
        self._repository = repository
        self._provider = provider
        self._settings = settings
        self._registry = DeviceTokenRegistry(repository)

    @property
    def registry(self) -> DeviceTokenRegistry:
        return self._registry

    async def _send(
        self, tokens: Sequence[str], payload: NotificationPayload
    ) -> SendResult:
        timeout = self._settings.push_send_timeout_seconds
        try:
            return await asyncio.wait_for(self._provider.send(tokens, payload), timeout)
        except asyncio.TimeoutError as exc:
            raise PushDeliveryError(
                504, f"Push send timed out after {timeout:g}s"
            ) from exc

    def _failure(
        self, notification: Notification, error: str, now: datetime.datetime
    ) -> _Outcome:
        updates = apply_retry_policy(
            notification,
            error,
            now,
            max_retries=self._settings.notification_max_retries,
            retry_delay=timedelta(
                minutes=self._settings.notification_retry_delay_minutes
            ),
        )
        return _Outcome(notification=notification, updates=updates, error=error)

    async def _process_one(
        self, notification: Notification, now: datetime.datetime
    ) -> _Outcome:
        try:
            tokens = await self._registry.list_active_tokens(notification.owner_id)
            if not tokens:
                logger.debug("No active tokens for user %s", notification.owner_id)
                return _Outcome(
                    notification=notification,
                    updates={
                        "sent": True,
                        "sent_at": now,
                        "error": NO_ACTIVE_TOKENS_ERROR,
                    },
                    no_tokens=True,
                )

            result = await self._send(tokens, notification.payload)
        except PushDeliveryError as exc:
            logger.warning(
                "Push delivery failed for notification %s: %s",
                notification.notification_id,
                exc,
            )
            return self._failure(notification, str(exc), now)
        except Exception as exc:
            logger.exception(
                "Error processing notification %s", notification.notification_id
            )
            return self._failure(notification, str(exc) or type(exc).__name__, now)

        invalid = [
            item.token
            for item in result.results
            if not item.success and is_permanent_token_error(item.error_code)
        ]
        if result.delivered:
            return _Outcome(
                notification=notification,
                updates={"sent": True, "sent_at": now, "error": None},
                delivered=True,
                invalid_tokens=invalid,
            )

        outcome = self._failure(notification, result.first_error(), now)
        outcome.invalid_tokens = invalid
        return outcome

    async def process_due_notifications(
        self,
        now: Optional[datetime.datetime] = None,
        batch_size: Optional[int] = None,
    ) -> ProcessingReport:
        """Deliver every unsent notification scheduled up to ``now``.

        Raises ``StoreError`` only when the due notifications cannot be read;
        failures of single notifications end up in ``report.errors``.
        """

        reference = ensure_utc(now or utc_now())
        limit = batch_size or self._settings.notification_batch_size
        due = await self._repository.find_due_notifications(reference, limit)

        report = ProcessingReport()
        if not due:
            logger.debug("No notifications to process")
            return report

        logger.info("Found %d notification(s) to process", len(due))
        semaphore = asyncio.Semaphore(self._settings.delivery_concurrency)

        async def guarded(notification: Notification) -> _Outcome:
            async with semaphore:
                return await self._process_one(notification, reference)

        outcomes = await asyncio.gather(*(guarded(n) for n in due))

        batch = self._repository.batch()
        invalid_tokens: set[str] = set()
        for outcome in outcomes:
            notification_id = outcome.notification.notification_id
            batch.update_notification(notification_id, **outcome.updates)
            invalid_tokens.update(outcome.invalid_tokens)

            if outcome.delivered:
                report.processed_count += 1
            elif outcome.no_tokens:
                report.skipped_no_tokens += 1
            elif outcome.updates.get("sent"):
                report.failed += 1
            else:
                report.retried += 1

            if outcome.error is not None:
                report.errors.append(f"Notification {notification_id}: {outcome.error}")

        if invalid_tokens:
            try:
                report.deactivated_tokens = await self._registry.deactivate_tokens(
                    invalid_tokens, batch
                )
            except StoreError as exc:
                logger.warning("Failed to look up invalid tokens: %s", exc)
                report.errors.append(f"Token deactivation: {exc}")

        try:
            await self._repository.commit(batch)
        except StoreError as exc:
            logger.exception("Failed to commit notification updates")
            report.errors.append(f"Commit: {exc}")

        logger.info(
            "Processed %d notification(s) with %d error(s)",
            report.processed_count,
            len(report.errors),
        )
        return report

    async def send_immediate_notification(
        self, owner_id: str, payload: NotificationPayload
    ) -> SendResult:
        """Push ``payload`` to the user's devices now, without retry or record."""

        tokens = await self._registry.list_active_tokens(owner_id)
        if not tokens:
            raise NoActiveDeviceTokens(f"No active device tokens for user {owner_id}")

        result = await self._send(tokens, payload)
        invalid = [
            item.token
            for item in result.results
            if not item.success and is_permanent_token_error(item.error_code)
        ]
        if invalid:
            try:
                await self._registry.deactivate_tokens(invalid)
            except StoreError as exc:
                logger.warning("Failed to remove invalid tokens: %s", exc)
        return result

    async def cleanup_sent_notifications(
        self, now: Optional[datetime.datetime] = None
    ) -> int:
        """Delete sent notifications older than the retention window."""

        reference = ensure_utc(now or utc_now())
        cutoff = reference - timedelta(days=self._settings.notification_retention_days)
        expired = await self._repository.find_expired_notifications(
            cutoff, self._settings.notification_cleanup_limit
        )
        if not expired:
            return 0

        batch = self._repository.batch()
        for notification in expired:
            batch.delete_notification(notification.notification_id)
        await self._repository.commit(batch)

        logger.info("Deleted %d old notification(s)", len(expired))
        return len(expired)


__all__ = [
    "NotificationDeliveryService",
    "apply_retry_policy",
    "NO_ACTIVE_TOKENS_ERROR",
]
