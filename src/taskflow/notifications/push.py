"""Push delivery provider contract and its HTTP gateway implementation."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, Sequence

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..errors import PushDeliveryError
from ..schemas.push import (
    ApnsConfig,
    ApnsPayload,
    Aps,
    ApsAlert,
    MulticastMessage,
    MulticastResponse,
    PushNotificationContent,
    WebpushConfig,
    WebpushNotification,
)
from .models import NotificationPayload, SendResult, TokenSendResult

logger = logging.getLogger(__name__)

# Codes after stripping an optional "messaging/" prefix
PERMANENT_TOKEN_ERROR_CODES = frozenset(
    {
        "not-registered",
        "registration-token-not-registered",
        "invalid-registration-token",
    }
)


def is_permanent_token_error(code: str | None) -> bool:
    """True when the provider reports the endpoint as permanently unusable."""

    if not code:
        return False
    normalized = code.strip().lower()
    if normalized.startswith("messaging/"):
        normalized = normalized[len("messaging/") :]
    return normalized in PERMANENT_TOKEN_ERROR_CODES


class PushProvider(Protocol):
    """Anything that can fan a payload out to a set of endpoints."""

    async def send(
        self, tokens: Sequence[str], payload: NotificationPayload
    ) -> SendResult: ...


def build_multicast_message(
    tokens: Sequence[str], payload: NotificationPayload
) -> MulticastMessage:
    try:
        badge = int(payload.badge or "0")
    except ValueError:
        badge = 0

    return MulticastMessage(
        notification=PushNotificationContent(
            title=payload.title,
            body=payload.body,
            image_url=payload.icon,
        ),
        data=dict(payload.data),
        tokens=list(tokens),
        apns=ApnsConfig(
            payload=ApnsPayload(
                aps=Aps(
                    alert=ApsAlert(title=payload.title, body=payload.body),
                    badge=badge,
                    sound=payload.sound or "default",
                )
            )
        ),
        webpush=WebpushConfig(
            notification=WebpushNotification(title=payload.title, body=payload.body)
        ),
    )


def _failed_chunk(tokens: list[str], error: PushDeliveryError) -> SendResult:
    return SendResult(
        success_count=0,
        failure_count=len(tokens),
        results=[
            TokenSendResult(
                token=token,
                success=False,
                error_code=f"gateway-{error.status_code}",
                error_message=str(error),
            )
            for token in tokens
        ],
    )


class HttpPushProvider:
    """Send multicast messages to an HTTP push gateway."""

    def __init__(
        self,
        settings: Settings,
        *,
        client: httpx.AsyncClient | None = None,
    ):
        self._settings = settings
        self._client = client
        self._owns_client = client is None
        self._client_lock = asyncio.Lock()

    @property
    def _endpoint(self) -> str:
        if self._settings.push_endpoint_url is None:
            raise PushDeliveryError(503, "Push endpoint is not configured")
        return str(self._settings.push_endpoint_url)

    @property
    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._settings.push_api_key is not None:
            headers["Authorization"] = (
                f"Bearer {self._settings.push_api_key.get_secret_value()}"
            )
        return headers

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        async with self._client_lock:
            if self._client is None:
                timeout = httpx.Timeout(
                    self._settings.push_send_timeout_seconds, connect=10.0
                )
                limits = httpx.Limits(max_connections=20, max_keepalive_connections=10)
                self._client = httpx.AsyncClient(timeout=timeout, limits=limits)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def send(
        self, tokens: Sequence[str], payload: NotificationPayload
    ) -> SendResult:
        """Send ``payload`` to every token, chunked to the gateway limit.

        A chunk the gateway rejects as a whole becomes failed results for its
        tokens, so the outcomes of the other chunks are kept. When every chunk
        fails the last ``PushDeliveryError`` is raised.
        """

        result = SendResult(success_count=0, failure_count=0)
        if not tokens:
            return result

        size = self._settings.push_max_tokens_per_send
        chunks = [
            list(tokens[start : start + size]) for start in range(0, len(tokens), size)
        ]
        last_error: PushDeliveryError | None = None
        failed_chunks = 0
        for chunk in chunks:
            try:
                part = await self._send_chunk(chunk, payload)
            except PushDeliveryError as exc:
                logger.warning("Push chunk of %d token(s) failed: %s", len(chunk), exc)
                failed_chunks += 1
                last_error = exc
                part = _failed_chunk(chunk, exc)
            result = result.merge(part)

        if last_error is not None and failed_chunks == len(chunks):
            raise last_error

        logger.debug("Sent to %d/%d tokens", result.success_count, len(tokens))
        return result

    async def _send_chunk(
        self, tokens: list[str], payload: NotificationPayload
    ) -> SendResult:
        message = build_multicast_message(tokens, payload)
        client = await self._get_http_client()

        try:
            response = await client.post(
                self._endpoint,
                json=message.model_dump(by_alias=True, exclude_none=True),
                headers=self._headers,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise PushDeliveryError(
                exc.response.status_code, exc.response.text or str(exc)
            ) from exc
        except httpx.HTTPError as exc:
            raise PushDeliveryError(503, f"Push gateway unreachable: {exc}") from exc

        try:
            parsed = MulticastResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise PushDeliveryError(502, f"Malformed gateway response: {exc}") from exc

        results: list[TokenSendResult] = []
        for index, token in enumerate(tokens):
            if index >= len(parsed.responses):
                results.append(
                    TokenSendResult(
                        token=token,
                        success=False,
                        error_code="unknown",
                        error_message="Missing result for token",
                    )
                )
                continue
            item = parsed.responses[index]
            results.append(
                TokenSendResult(
                    token=token,
                    success=item.success,
                    error_code=item.error.code if item.error else None,
                    error_message=item.error.message if item.error else None,
                )
            )

        return SendResult(
            success_count=parsed.success_count,
            failure_count=parsed.failure_count,
            results=results,
        )


__all__ = [
    "PushProvider",
    "HttpPushProvider",
    "build_multicast_message",
    "is_permanent_token_error",
    "PERMANENT_TOKEN_ERROR_CODES",
]
