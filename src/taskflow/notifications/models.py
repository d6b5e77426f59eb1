"""Notification, device token and delivery result models."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class NotificationType(str, Enum):
    DEADLINE_REMINDER = "deadline_reminder"
    OVERDUE_ALERT = "overdue_alert"
    COMPLETION_REMINDER = "completion_reminder"


class DeviceType(str, Enum):
    WEB = "web"
    ANDROID = "android"
    IOS = "ios"


@dataclass(slots=True)
class NotificationPayload:
    """Content pushed to the user's devices."""

    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)
    icon: Optional[str] = None
    badge: Optional[str] = None
    sound: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "body": self.body,
            "data": dict(self.data),
            "icon": self.icon,
            "badge": self.badge,
            "sound": self.sound,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> NotificationPayload:
        return cls(
            title=str(raw.get("title", "")),
            body=str(raw.get("body", "")),
            data={str(k): str(v) for k, v in (raw.get("data") or {}).items()},
            icon=raw.get("icon"),
            badge=raw.get("badge"),
            sound=raw.get("sound"),
        )


@dataclass(slots=True)
class Notification:
    """One scheduled reminder for one task instance.

    ``sent`` is True for both terminal states; a delivered record has no
    ``error``, a terminally failed one keeps the last error.
    """

    notification_id: str
    owner_id: str
    task_id: str
    type: NotificationType
    scheduled_for: datetime.datetime
    payload: NotificationPayload
    sent: bool = False
    sent_at: Optional[datetime.datetime] = None
    retry_count: int = 0
    error: Optional[str] = None
    created_at: Optional[datetime.datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.sent

    @property
    def delivered(self) -> bool:
        return self.sent and self.error is None


@dataclass(slots=True)
class DeviceToken:
    """One push endpoint belonging to a user."""

    owner_id: str
    token: str
    device_type: DeviceType = DeviceType.WEB
    is_active: bool = True
    created_at: Optional[datetime.datetime] = None
    last_used: Optional[datetime.datetime] = None


@dataclass(slots=True)
class TokenSendResult:
    """Per-endpoint outcome reported by the push provider."""

    token: str
    success: bool
    error_code: Optional[str] = None
    error_message: Optional[str] = None


@dataclass(slots=True)
class SendResult:
    """Aggregated outcome of one fan-out send."""

    success_count: int
    failure_count: int
    results: list[TokenSendResult] = field(default_factory=list)

    @property
    def delivered(self) -> bool:
        """At least one endpoint accepted the message."""

        return self.success_count > 0

    def merge(self, other: SendResult) -> SendResult:
        return SendResult(
            success_count=self.success_count + other.success_count,
            failure_count=self.failure_count + other.failure_count,
            results=[*self.results, *other.results],
        )

    def first_error(self) -> str:
        for result in self.results:
            if not result.success and (result.error_message or result.error_code):
                return result.error_message or result.error_code or ""
        return "Failed to send to any tokens"


@dataclass(slots=True)
class ProcessingReport:
    """Summary of one delivery pipeline invocation."""

    processed_count: int = 0
    retried: int = 0
    failed: int = 0
    skipped_no_tokens: int = 0
    deactivated_tokens: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass(slots=True)
class NotificationStats:
    total: int
    sent: int
    pending: int
    failed: int
    type_breakdown: dict[str, int]


__all__ = [
    "NotificationType",
    "DeviceType",
    "NotificationPayload",
    "Notification",
    "DeviceToken",
    "TokenSendResult",
    "SendResult",
    "ProcessingReport",
    "NotificationStats",
]
