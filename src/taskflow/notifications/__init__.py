"""Deadline reminders: scheduling, push delivery and endpoint upkeep."""

from .delivery import NotificationDeliveryService, apply_retry_policy
from .devices import DeviceTokenRegistry
from .models import (
    DeviceToken,
    DeviceType,
    Notification,
    NotificationPayload,
    NotificationStats,
    NotificationType,
    ProcessingReport,
    SendResult,
    TokenSendResult,
)
from .push import HttpPushProvider, PushProvider, is_permanent_token_error
from .scheduler import NotificationScheduler

__all__ = [
    "DeviceToken",
    "DeviceType",
    "DeviceTokenRegistry",
    "HttpPushProvider",
    "Notification",
    "NotificationDeliveryService",
    "NotificationPayload",
    "NotificationScheduler",
    "NotificationStats",
    "NotificationType",
    "ProcessingReport",
    "PushProvider",
    "SendResult",
    "TokenSendResult",
    "apply_retry_policy",
    "is_permanent_token_error",
]
