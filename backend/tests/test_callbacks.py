# tests/test_callbacks.py — Outbound callback delivery and subscriber admin API
import asyncio
import json

import httpx
import pytest
from httpx import AsyncClient

from callbacks import CallbackEmitter, CallbackEvent, Subscriber, project_event, sign_body
from errors import Cancelled
from tests.conftest import get_auth_headers


def _event(event_type: str = "task", action: str = "created") -> CallbackEvent:
    return project_event(event_type, action, "proj-1", resource={"id": "t-1"})


def test_event_mask_matching():
    everything = Subscriber(url="https://a.test")
    assert everything.accepts(_event())

    masked = Subscriber(url="https://a.test", event_mask=["task.created", "sprint", "repo*"])
    assert masked.accepts(_event("task", "created"))
    assert not masked.accepts(_event("task", "deleted"))
    assert masked.accepts(_event("sprint", "closed"))
    assert masked.accepts(_event("repository", "created"))
    assert not masked.accepts(_event("project", "created"))


@pytest.mark.asyncio
async def test_delivery_headers_and_signature(emitter, callback_sink):
    sub = Subscriber(url="https://hooks.test/in", secret="s3cret-value", headers={"X-Team": "core"})
    event = _event()
    result = await emitter.send(sub, event)
    assert result.success
    assert result.status_code == 200

    request = callback_sink.requests[0]
    assert request.headers["User-Agent"] == "AgileFlow-Webhook/1.0"
    assert request.headers["X-Event-ID"] == event.id
    assert request.headers["X-Event-Type"] == "task"
    assert request.headers["X-Event-Timestamp"].endswith("Z")
    assert request.headers["X-Team"] == "core"
    assert request.headers["X-Hub-Signature-256"] == sign_body(request.content, "s3cret-value")
    assert json.loads(request.content)["source"] == "project-service"


@pytest.mark.asyncio
async def test_unsigned_without_secret(emitter, callback_sink):
    await emitter.send(Subscriber(url="https://hooks.test/in"), _event())
    assert "X-Hub-Signature-256" not in callback_sink.requests[0].headers


@pytest.mark.asyncio
async def test_filtered_event_counts_as_delivered(emitter, callback_sink):
    sub = Subscriber(url="https://hooks.test/in", event_mask=["sprint"])
    result = await emitter.send(sub, _event())
    assert result.success
    assert callback_sink.requests == []


@pytest.mark.asyncio
async def test_retries_server_errors_then_succeeds(emitter, callback_sink):
    callback_sink.statuses = [500, 429]
    result = await emitter.send_with_retry(Subscriber(url="https://hooks.test/in", retry_max=3), _event())
    assert result.success
    assert len(callback_sink.requests) == 3
    assert [json.loads(r.content)["retry_count"] for r in callback_sink.requests] == [0, 1, 2]


@pytest.mark.asyncio
async def test_client_errors_are_not_retried(emitter, callback_sink):
    callback_sink.statuses = [404]
    result = await emitter.send_with_retry(Subscriber(url="https://hooks.test/in", retry_max=3), _event())
    assert not result.success
    assert result.status_code == 404
    assert not result.retryable
    assert len(callback_sink.requests) == 1


@pytest.mark.asyncio
async def test_gives_up_after_retry_budget(emitter, callback_sink):
    callback_sink.statuses = [503] * 10
    result = await emitter.send_with_retry(Subscriber(url="https://hooks.test/in", retry_max=2), _event())
    assert not result.success
    assert len(callback_sink.requests) == 3


@pytest.mark.asyncio
async def test_transport_errors_are_retryable():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(204)

    emitter = CallbackEmitter(transport=httpx.MockTransport(handler), backoff=lambda attempt: 0)
    try:
        result = await emitter.send_with_retry(Subscriber(url="https://hooks.test/in", retry_max=1), _event())
    finally:
        await emitter.aclose()
    assert result.success
    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_close_during_backoff_cancels(callback_sink):
    callback_sink.statuses = [500]
    emitter = CallbackEmitter(
        transport=httpx.MockTransport(callback_sink.handler), backoff=lambda attempt: 60,
    )
    delivery = asyncio.create_task(
        emitter.send_with_retry(Subscriber(url="https://hooks.test/in", retry_max=3), _event())
    )
    while not callback_sink.requests:
        await asyncio.sleep(0)
    await emitter.aclose()

    with pytest.raises(Cancelled):
        await delivery
    assert len(callback_sink.requests) == 1


@pytest.mark.asyncio
async def test_emit_fans_out_to_matching_subscribers(emitter, callback_sink):
    a = await emitter.register(Subscriber(url="https://a.test/hook"))
    b = await emitter.register(Subscriber(url="https://b.test/hook", event_mask=["task.*"]))
    await emitter.register(Subscriber(url="https://c.test/hook", event_mask=["sprint"]))

    results = await emitter.emit(_event())
    assert set(results) == {a.id, b.id}
    assert all(r.success for r in results.values())
    assert sorted(r.url.host for r in callback_sink.requests) == ["a.test", "b.test"]


@pytest.mark.asyncio
async def test_unregister(emitter):
    sub = await emitter.register(Subscriber(url="https://a.test/hook"))
    assert await emitter.unregister(sub.id) is True
    assert await emitter.unregister(sub.id) is False
    assert await emitter.subscribers() == []


# ============================================================
# ADMIN API
# ============================================================

@pytest.mark.asyncio
async def test_subscriber_admin_api(client: AsyncClient, test_user):
    headers = get_auth_headers(test_user)
    resp = await client.post(
        "/api/v1/callbacks/subscribers",
        json={"url": "https://hooks.test/agile", "secret": "0123456789", "event_mask": ["task"]},
        headers=headers,
    )
    assert resp.status_code == 201
    created = resp.json()
    assert created["has_secret"] is True
    assert "secret" not in created

    resp = await client.get("/api/v1/callbacks/subscribers", headers=headers)
    assert [s["id"] for s in resp.json()] == [created["id"]]

    assert (await client.delete(f"/api/v1/callbacks/subscribers/{created['id']}", headers=headers)).status_code == 204
    assert (await client.delete(f"/api/v1/callbacks/subscribers/{created['id']}", headers=headers)).status_code == 404


@pytest.mark.asyncio
async def test_subscriber_requires_valid_url(client: AsyncClient, test_user):
    resp = await client.post(
        "/api/v1/callbacks/subscribers", json={"url": "not a url"}, headers=get_auth_headers(test_user),
    )
    assert resp.status_code == 422
