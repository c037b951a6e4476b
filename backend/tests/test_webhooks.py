# tests/test_webhooks.py — Inbound Git webhook verification and activity processing
import json
import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import select

import routers.webhooks as webhooks_router
from models import ActivityItem, Repository, RepoVisibility
from routers.webhooks import SIGNATURE_HEADER
from callbacks import Subscriber, sign_body
from tests.conftest import get_auth_headers
from webhook_events import GitEventEnvelope
from webhook_processor import EventProcessor, run_event_processing

SECRET = "test-webhook-secret"


def _envelope(project_id: str, event_type: str, payload: dict, **extra) -> dict:
    return {
        "event_type": event_type,
        "event_id": extra.pop("event_id", str(uuid.uuid4())),
        "timestamp": "2026-05-04T10:15:00Z",
        "project_id": project_id,
        "user_id": "dev-1",
        "payload": payload,
        **extra,
    }


async def _deliver(client: AsyncClient, envelope: dict, secret: str = SECRET):
    body = json.dumps(envelope).encode()
    headers = {"Content-Type": "application/json", SIGNATURE_HEADER: sign_body(body, secret)}
    return await client.post("/webhooks/git", content=body, headers=headers)


def _push(project_id: str, **extra) -> dict:
    return _envelope(project_id, "push", {
        "branch": "main",
        "before": "a" * 40,
        "after": "b" * 40,
        "pusher": "dana",
        "commits": [
            {"sha": "c" * 40, "message": "Fix login", "author": "dana"},
            {"sha": "b" * 40, "message": "Bump deps", "author": "dana"},
        ],
    }, **extra)


# ============================================================
# VERIFICATION
# ============================================================

@pytest.mark.asyncio
async def test_missing_signature_rejected(client: AsyncClient, test_project):
    resp = await client.post("/webhooks/git", json=_push(test_project.id))
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_wrong_signature_rejected(client: AsyncClient, test_project):
    resp = await _deliver(client, _push(test_project.id), secret="not-the-secret")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_malformed_body_rejected(client: AsyncClient):
    body = b"{not json"
    resp = await client.post(
        "/webhooks/git", content=body, headers={SIGNATURE_HEADER: sign_body(body, SECRET)},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Malformed JSON body"


@pytest.mark.asyncio
async def test_envelope_with_bad_project_id_rejected(client: AsyncClient):
    resp = await _deliver(client, _push("not-a-uuid"))
    assert resp.status_code == 400
    assert "project_id" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_envelope_with_empty_project_id_rejected(client: AsyncClient, monkeypatch):
    seen = []

    async def fake_processing(envelope, emitter=None, timeout=30.0):
        seen.append(envelope)

    monkeypatch.setattr(webhooks_router, "run_event_processing", fake_processing)
    resp = await _deliver(client, _push(""))
    assert resp.status_code == 400
    assert "project_id" in resp.json()["detail"]
    assert seen == []


@pytest.mark.asyncio
async def test_empty_repository_id_is_optional(test_project):
    envelope = GitEventEnvelope.model_validate(_push(test_project.id, repository_id=""))
    assert envelope.repository_id is None
    assert envelope.project_id == test_project.id


@pytest.mark.asyncio
async def test_non_ascii_signature_rejected(client: AsyncClient, test_project):
    body = json.dumps(_push(test_project.id)).encode()
    resp = await client.post(
        "/webhooks/git",
        content=body,
        headers={"Content-Type": "application/json", SIGNATURE_HEADER: b"sha256=\xe9\xe9"},
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_accepted_event_is_handed_off(client: AsyncClient, test_project, monkeypatch):
    seen = []

    async def fake_processing(envelope, emitter=None, timeout=30.0):
        seen.append((envelope.event_id, timeout))

    monkeypatch.setattr(webhooks_router, "run_event_processing", fake_processing)
    envelope = _push(test_project.id)
    resp = await _deliver(client, envelope)
    assert resp.status_code == 200
    assert resp.json() == {"message": "Event received", "event_id": envelope["event_id"]}
    assert seen == [(envelope["event_id"], webhooks_router.WEBHOOK_PROCESSING_TIMEOUT)]


@pytest.mark.asyncio
async def test_webhook_health(client: AsyncClient):
    resp = await client.get("/webhooks/health")
    assert resp.status_code == 200
    assert resp.json()["service"] == "git-webhook-handler"


# ============================================================
# PROCESSING
# ============================================================

@pytest.mark.asyncio
async def test_push_becomes_activity(client: AsyncClient, test_user, test_project):
    resp = await _deliver(client, _push(test_project.id))
    assert resp.status_code == 200

    resp = await client.get(f"/api/v1/projects/{test_project.id}/activity", headers=get_auth_headers(test_user))
    items = resp.json()
    assert len(items) == 1
    assert items[0]["event_type"] == "push"
    assert items[0]["action"] == "pushed"
    assert items[0]["summary"] == "dana pushed 2 commit(s) to main"
    assert items[0]["details"]["latest_commit"]["message"] == "Bump deps"


@pytest.mark.asyncio
async def test_redelivery_is_idempotent(client: AsyncClient, test_user, test_project):
    envelope = _push(test_project.id)
    for _ in range(2):
        assert (await _deliver(client, envelope)).status_code == 200

    resp = await client.get(f"/api/v1/projects/{test_project.id}/activity", headers=get_auth_headers(test_user))
    assert len(resp.json()) == 1


@pytest.mark.asyncio
async def test_processing_never_touches_tasks(client: AsyncClient, test_user, test_project):
    headers = get_auth_headers(test_user)
    task = (await client.post(
        f"/api/v1/agile/projects/{test_project.id}/tasks", json={"title": "Fix login"}, headers=headers,
    )).json()
    commit = _envelope(test_project.id, "commit", {
        "action": "created",
        "commit": {"sha": "d" * 40, "message": f"Fix login, closes CORE-{task['task_number']}", "author": "dana"},
    })
    assert (await _deliver(client, commit)).status_code == 200

    resp = await client.get(f"/api/v1/agile/tasks/{task['id']}", headers=headers)
    assert resp.json()["status"] == "todo"
    assert resp.json()["updated_at"] == task["updated_at"]


@pytest.mark.asyncio
async def test_unknown_event_type_dropped(db_session, test_project):
    envelope = GitEventEnvelope.model_validate(_envelope(test_project.id, "pipeline", {"state": "green"}))
    assert await EventProcessor(db_session).process(envelope) is None
    assert (await db_session.execute(select(ActivityItem))).scalars().all() == []


@pytest.mark.asyncio
async def test_unhandled_action_ignored(db_session, test_project):
    envelope = GitEventEnvelope.model_validate(_envelope(test_project.id, "tag", {
        "action": "moved", "tag": {"name": "v1.0.0"},
    }))
    assert await EventProcessor(db_session).process(envelope) is None


@pytest.mark.asyncio
async def test_repository_events_update_shadow(session_factory, test_project):
    repo_id = str(uuid.uuid4())
    async with session_factory() as db:
        db.add(Repository(
            id=repo_id, project_id=test_project.id, name="core",
            visibility=RepoVisibility.PRIVATE, default_branch="main",
        ))
        await db.commit()

    changed = GitEventEnvelope.model_validate(_envelope(test_project.id, "branch", {
        "action": "default_changed", "branch": {"name": "trunk", "repository_id": repo_id},
    }))
    await run_event_processing(changed, session_factory=session_factory)

    deleted = GitEventEnvelope.model_validate(_envelope(test_project.id, "repository", {
        "action": "deleted", "repository": {"id": repo_id, "name": "core"},
    }, repository_id=repo_id))
    await run_event_processing(deleted, session_factory=session_factory)

    async with session_factory() as db:
        shadow = await db.get(Repository, repo_id)
        assert shadow.default_branch == "trunk"
        assert shadow.deleted_at is not None
        actions = (await db.execute(select(ActivityItem.action))).scalars().all()
        assert sorted(actions) == ["default_changed", "deleted"]


@pytest.mark.asyncio
async def test_processed_event_is_republished(db_session, test_project, emitter, callback_sink):
    await emitter.register(Subscriber(url="https://hooks.test/git", event_mask=["push"]))
    envelope = GitEventEnvelope.model_validate(_push(test_project.id))
    item = await EventProcessor(db_session, emitter).process(envelope)
    await db_session.commit()
    assert item is not None
    await emitter.aclose()

    assert len(callback_sink.requests) == 1
    body = json.loads(callback_sink.requests[0].content)
    assert body["event_type"] == "push"
    assert body["action"] == "pushed"
    assert body["metadata"]["event_id"] == envelope.event_id
