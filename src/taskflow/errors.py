"""Exception hierarchy shared by the occurrence and notification services."""

from __future__ import annotations

from typing import Any


class TaskflowError(RuntimeError):
    """Base class for engine failures."""


class StoreError(TaskflowError):
    """Raised when a store query or batch commit fails."""


class TaskNotFound(TaskflowError):
    """Raised when an operation requires a task that does not exist."""


class NoActiveDeviceTokens(TaskflowError):
    """Raised when a user has no active push endpoints."""


class PushDeliveryError(TaskflowError):
    """Wrap transport or API failures when talking to the push gateway."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


__all__ = [
    "TaskflowError",
    "StoreError",
    "TaskNotFound",
    "NoActiveDeviceTokens",
    "PushDeliveryError",
]
