from __future__ import annotations

import json

import httpx
import pytest
from pydantic import SecretStr

from taskflow.errors import PushDeliveryError
from taskflow.notifications.models import NotificationPayload
from taskflow.notifications.push import (
    HttpPushProvider,
    build_multicast_message,
    is_permanent_token_error,
)

PAYLOAD = NotificationPayload(
    title="Task Reminder",
    body='"Pay rent" is due in 1 hour 📅',
    data={"taskId": "task-1", "reminderMinutes": "60"},
    icon="📋",
)


def ok_response(tokens: list[str], failures: dict[str, dict] | None = None) -> dict:
    failures = failures or {}
    responses = []
    for token in tokens:
        if token in failures:
            responses.append({"success": False, "error": failures[token]})
        else:
            responses.append({"success": True, "messageId": f"msg-{token}"})
    return {
        "successCount": len(tokens) - len(failures),
        "failureCount": len(failures),
        "responses": responses,
    }


def make_provider(settings, handler, **overrides) -> HttpPushProvider:
    if overrides:
        settings = settings.model_copy(update=overrides)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpPushProvider(settings, client=client)


@pytest.mark.parametrize(
    ("code", "expected"),
    [
        ("messaging/registration-token-not-registered", True),
        ("messaging/invalid-registration-token", True),
        ("not-registered", True),
        ("messaging/internal-error", False),
        ("messaging/quota-exceeded", False),
        (None, False),
        ("", False),
    ],
)
def test_is_permanent_token_error(code, expected):
    assert is_permanent_token_error(code) is expected


def test_multicast_message_wire_format():
    message = build_multicast_message(["a", "b"], PAYLOAD)

    body = message.model_dump(by_alias=True, exclude_none=True)

    assert body["tokens"] == ["a", "b"]
    assert body["notification"] == {
        "title": "Task Reminder",
        "body": '"Pay rent" is due in 1 hour 📅',
        "imageUrl": "📋",
    }
    assert body["data"] == {"taskId": "task-1", "reminderMinutes": "60"}
    assert body["android"]["priority"] == "high"
    assert body["android"]["notification"]["channelId"] == "taskflow_reminders"
    assert body["apns"]["payload"]["aps"]["sound"] == "default"
    assert body["webpush"]["notification"]["requireInteraction"] is True


@pytest.mark.anyio
async def test_send_maps_per_token_results(settings):
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        tokens = json.loads(request.content)["tokens"]
        return httpx.Response(
            200,
            json=ok_response(
                tokens,
                {"b": {"code": "messaging/registration-token-not-registered", "message": "gone"}},
            ),
        )

    provider = make_provider(
        settings, handler, push_api_key=SecretStr("secret-key")
    )

    result = await provider.send(["a", "b"], PAYLOAD)

    assert result.success_count == 1
    assert result.failure_count == 1
    assert result.delivered
    assert [(r.token, r.success, r.error_code) for r in result.results] == [
        ("a", True, None),
        ("b", False, "messaging/registration-token-not-registered"),
    ]
    assert captured[0].headers["Authorization"] == "Bearer secret-key"
    assert str(captured[0].url) == "https://push.example.com/v1/send"


@pytest.mark.anyio
async def test_send_chunks_large_token_lists(settings):
    chunks: list[list[str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        tokens = json.loads(request.content)["tokens"]
        chunks.append(tokens)
        return httpx.Response(200, json=ok_response(tokens))

    provider = make_provider(settings, handler, push_max_tokens_per_send=2)

    result = await provider.send(["t1", "t2", "t3", "t4", "t5"], PAYLOAD)

    assert chunks == [["t1", "t2"], ["t3", "t4"], ["t5"]]
    assert result.success_count == 5
    assert len(result.results) == 5


@pytest.mark.anyio
async def test_send_without_tokens_makes_no_request(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    provider = make_provider(settings, handler)

    result = await provider.send([], PAYLOAD)

    assert result.success_count == 0
    assert not result.delivered


@pytest.mark.anyio
async def test_http_error_raises_delivery_error(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, text="bad credentials")

    provider = make_provider(settings, handler)

    with pytest.raises(PushDeliveryError) as excinfo:
        await provider.send(["a"], PAYLOAD)

    assert excinfo.value.status_code == 401
    assert str(excinfo.value) == "bad credentials"


@pytest.mark.anyio
async def test_transport_error_is_unavailable(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    provider = make_provider(settings, handler)

    with pytest.raises(PushDeliveryError) as excinfo:
        await provider.send(["a"], PAYLOAD)

    assert excinfo.value.status_code == 503


@pytest.mark.anyio
async def test_malformed_response_is_bad_gateway(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"unexpected": True})

    provider = make_provider(settings, handler)

    with pytest.raises(PushDeliveryError) as excinfo:
        await provider.send(["a"], PAYLOAD)

    assert excinfo.value.status_code == 502


@pytest.mark.anyio
async def test_missing_token_result_counts_as_failure(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "successCount": 1,
                "failureCount": 0,
                "responses": [{"success": True}],
            },
        )

    provider = make_provider(settings, handler)

    result = await provider.send(["a", "b"], PAYLOAD)

    assert result.results[1].success is False
    assert result.results[1].error_code == "unknown"


@pytest.mark.anyio
async def test_unconfigured_endpoint(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    provider = make_provider(settings, handler, push_endpoint_url=None)

    with pytest.raises(PushDeliveryError) as excinfo:
        await provider.send(["a"], PAYLOAD)

    assert excinfo.value.status_code == 503


@pytest.mark.anyio
async def test_failed_chunk_keeps_other_chunk_results(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        tokens = json.loads(request.content)["tokens"]
        if "t3" in tokens:
            return httpx.Response(500, text="gateway overloaded")
        return httpx.Response(
            200,
            json=ok_response(
                tokens,
                {"t2": {"code": "messaging/registration-token-not-registered"}},
            ),
        )

    provider = make_provider(settings, handler, push_max_tokens_per_send=2)

    result = await provider.send(["t1", "t2", "t3"], PAYLOAD)

    assert result.delivered
    assert result.success_count == 1
    assert result.failure_count == 2
    assert [(r.token, r.success, r.error_code) for r in result.results] == [
        ("t1", True, None),
        ("t2", False, "messaging/registration-token-not-registered"),
        ("t3", False, "gateway-500"),
    ]
    assert not is_permanent_token_error(result.results[2].error_code)


@pytest.mark.anyio
async def test_every_chunk_failing_raises(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="down")

    provider = make_provider(settings, handler, push_max_tokens_per_send=1)

    with pytest.raises(PushDeliveryError) as excinfo:
        await provider.send(["t1", "t2"], PAYLOAD)

    assert excinfo.value.status_code == 503
