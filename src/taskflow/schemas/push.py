"""Wire schemas for the multicast push gateway.

The request mirrors a multicast message: one notification, an optional data
map, per-platform overrides and the list of target tokens. The response holds
one entry per token, in request order.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PushNotificationContent(BaseModel):
    title: str
    body: str
    image_url: Optional[str] = Field(default=None, serialization_alias="imageUrl")


class AndroidNotification(BaseModel):
    icon: str = "ic_notification"
    sound: str = "default"
    channel_id: str = Field(
        default="taskflow_reminders", serialization_alias="channelId"
    )


class AndroidConfig(BaseModel):
    priority: str = "high"
    notification: AndroidNotification = Field(default_factory=AndroidNotification)


class ApsAlert(BaseModel):
    title: str
    body: str


class Aps(BaseModel):
    alert: ApsAlert
    badge: int = 0
    sound: str = "default"


class ApnsPayload(BaseModel):
    aps: Aps


class ApnsConfig(BaseModel):
    payload: ApnsPayload


class WebpushNotification(BaseModel):
    title: str
    body: str
    icon: str = "/icons/icon-192x192.png"
    badge: str = "/icons/badge-72x72.png"
    tag: str = "taskflow-reminder"
    require_interaction: bool = Field(
        default=True, serialization_alias="requireInteraction"
    )


class WebpushConfig(BaseModel):
    notification: WebpushNotification


class MulticastMessage(BaseModel):
    """Request body sent to the push gateway."""

    notification: PushNotificationContent
    data: dict[str, str] = Field(default_factory=dict)
    tokens: list[str] = Field(..., min_length=1)
    android: AndroidConfig = Field(default_factory=AndroidConfig)
    apns: ApnsConfig
    webpush: WebpushConfig


class PushErrorInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: str = "unknown"
    message: Optional[str] = None


class PushTokenResponse(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    success: bool
    message_id: Optional[str] = Field(default=None, alias="messageId")
    error: Optional[PushErrorInfo] = None


class MulticastResponse(BaseModel):
    """Gateway response with one entry per requested token."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    success_count: int = Field(..., alias="successCount", ge=0)
    failure_count: int = Field(..., alias="failureCount", ge=0)
    responses: list[PushTokenResponse] = Field(default_factory=list)
