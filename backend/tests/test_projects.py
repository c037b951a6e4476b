# tests/test_projects.py — Project provisioning saga, membership and repositories
import json

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from compensation import CompensationLedger
from models import CompensationRecord, CompensationStatus, Project, Repository
from provisioning import ProjectProvisioningSaga, ProvisionRequest
from tests.conftest import get_auth_headers


@pytest.mark.asyncio
async def test_create_project_without_repository(client: AsyncClient, test_user, fake_gateway):
    headers = get_auth_headers(test_user)
    resp = await client.post("/api/v1/projects", json={"key": "Web", "name": "Website"}, headers=headers)
    assert resp.status_code == 201
    data = resp.json()
    assert data["key"] == "web"
    assert data["manager_id"] == test_user.id
    assert data["repository"] is None
    assert fake_gateway.calls == []

    resp = await client.get("/api/v1/projects", headers=headers)
    assert [p["id"] for p in resp.json()] == [data["id"]]

    members = await client.get(f"/api/v1/projects/{data['id']}/members", headers=headers)
    assert [(m["user_id"], m["role_id"]) for m in members.json()] == [(test_user.id, "owner")]


@pytest.mark.asyncio
async def test_create_project_with_repository(client: AsyncClient, db_session, test_user, fake_gateway):
    headers = get_auth_headers(test_user)
    resp = await client.post(
        "/api/v1/projects",
        json={"key": "api", "name": "API", "init_repository": True, "visibility": "internal"},
        headers=headers,
    )
    assert resp.status_code == 201, resp.text
    repo = resp.json()["repository"]
    assert repo["name"] == "api"
    assert repo["visibility"] == "internal"
    assert repo["id"] in fake_gateway.repositories

    # The finished saga leaves no live compensation behind
    result = await db_session.execute(
        select(CompensationRecord).where(CompensationRecord.deleted_at.is_(None))
    )
    assert result.scalars().all() == []

    resp = await client.get(f"/api/v1/projects/{resp.json()['id']}/repositories", headers=headers)
    assert [r["id"] for r in resp.json()] == [repo["id"]]


@pytest.mark.asyncio
async def test_duplicate_key_conflicts(client: AsyncClient, test_user):
    headers = get_auth_headers(test_user)
    assert (await client.post("/api/v1/projects", json={"key": "dup", "name": "One"}, headers=headers)).status_code == 201
    resp = await client.post("/api/v1/projects", json={"key": "DUP", "name": "Two"}, headers=headers)
    assert resp.status_code == 409
    assert resp.json()["kind"] == "conflict"


@pytest.mark.asyncio
async def test_invalid_key_rejected(client: AsyncClient, test_user):
    resp = await client.post(
        "/api/v1/projects", json={"key": "9lives", "name": "Bad"}, headers=get_auth_headers(test_user),
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_gateway_failure_rolls_project_back(client: AsyncClient, db_session, test_user, fake_gateway):
    """A 500 from the gateway leaves no live project and no shadow repository"""
    fake_gateway.fail_create = 500
    headers = get_auth_headers(test_user)
    resp = await client.post(
        "/api/v1/projects", json={"key": "doomed", "name": "Doomed", "init_repository": True}, headers=headers,
    )
    assert resp.status_code == 502
    assert resp.json()["kind"] == "upstream_failure"
    assert "gateway exploded" in resp.json()["detail"]

    project = (await db_session.execute(select(Project).where(Project.key == "doomed"))).scalar_one()
    assert project.deleted_at is not None
    assert (await db_session.execute(select(Repository))).scalars().all() == []
    assert (await client.get("/api/v1/projects", headers=headers)).json() == []

    # The key is free again
    resp = await client.post("/api/v1/projects", json={"key": "doomed", "name": "Retry"}, headers=headers)
    assert resp.status_code == 201


@pytest.mark.asyncio
async def test_failure_after_repository_deletes_it(client: AsyncClient, db_session, test_user, fake_gateway):
    fake_gateway.created_visibility = "galactic"
    resp = await client.post(
        "/api/v1/projects",
        json={"key": "half", "name": "Half done", "init_repository": True},
        headers=get_auth_headers(test_user),
    )
    assert resp.status_code == 400
    assert fake_gateway.repositories == {}
    assert [method for method, _ in fake_gateway.calls] == ["POST", "DELETE"]

    records = (await db_session.execute(select(CompensationRecord))).scalars().all()
    assert sorted(r.action.value for r in records) == ["delete_project", "delete_repository"]
    assert all(r.status == CompensationStatus.EXECUTED for r in records)


@pytest.mark.asyncio
async def test_failed_compensation_can_be_retried(client: AsyncClient, db_session, test_user, fake_gateway):
    fake_gateway.created_visibility = "galactic"
    fake_gateway.fail_delete = 503
    headers = get_auth_headers(test_user)
    resp = await client.post(
        "/api/v1/projects", json={"key": "stuck", "name": "Stuck", "init_repository": True}, headers=headers,
    )
    assert resp.status_code == 400
    assert len(fake_gateway.repositories) == 1

    records = {r.action.value: r for r in (await db_session.execute(select(CompensationRecord))).scalars().all()}
    assert records["delete_repository"].status == CompensationStatus.FAILED
    assert records["delete_repository"].retry_count == 3
    assert records["delete_project"].status == CompensationStatus.EXECUTED

    fake_gateway.fail_delete = None
    resp = await client.post("/api/v1/projects/compensations/retry", headers=headers)
    assert resp.status_code == 200
    assert resp.json() == {"retried": 1, "executed": 1, "failed": 0}
    assert fake_gateway.repositories == {}


@pytest.mark.asyncio
async def test_project_not_kept_when_undo_entry_cannot_be_written(db_session, gateway, fake_gateway, test_user, monkeypatch):
    async def broken_record(self, *args, **kwargs):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(CompensationLedger, "record", broken_record)
    saga = ProjectProvisioningSaga(db_session, gateway)
    with pytest.raises(RuntimeError):
        await saga.run(ProvisionRequest(key="orphan", name="Orphan", init_repository=True), test_user)

    assert (await db_session.execute(select(Project).where(Project.key == "orphan"))).scalars().all() == []
    assert fake_gateway.calls == []


@pytest.mark.asyncio
async def test_update_and_archive_project(client: AsyncClient, test_user, test_project):
    headers = get_auth_headers(test_user)
    resp = await client.patch(
        f"/api/v1/projects/{test_project.id}", json={"name": "Core 2", "status": "archived"}, headers=headers,
    )
    assert resp.status_code == 200
    assert resp.json()["name"] == "Core 2"
    assert resp.json()["status"] == "archived"

    resp = await client.get("/api/v1/projects", params={"status": "archived"}, headers=headers)
    assert [p["id"] for p in resp.json()] == [test_project.id]


@pytest.mark.asyncio
async def test_deleted_project_is_invisible(client: AsyncClient, test_user, test_project):
    headers = get_auth_headers(test_user)
    assert (await client.delete(f"/api/v1/projects/{test_project.id}", headers=headers)).status_code == 204
    assert (await client.get(f"/api/v1/projects/{test_project.id}", headers=headers)).status_code == 404
    assert (await client.get("/api/v1/projects", headers=headers)).json() == []


@pytest.mark.asyncio
async def test_membership_grants_access(client: AsyncClient, test_user, other_user, test_project):
    url = f"/api/v1/projects/{test_project.id}"
    assert (await client.get(url, headers=get_auth_headers(other_user))).status_code == 403

    resp = await client.post(
        f"{url}/members", json={"user_id": other_user.id}, headers=get_auth_headers(test_user),
    )
    assert resp.status_code == 201
    assert (await client.get(url, headers=get_auth_headers(other_user))).status_code == 200

    resp = await client.post(f"{url}/members", json={"user_id": other_user.id}, headers=get_auth_headers(test_user))
    assert resp.status_code == 409

    resp = await client.delete(f"{url}/members/{other_user.id}", headers=get_auth_headers(test_user))
    assert resp.status_code == 204
    assert (await client.get(url, headers=get_auth_headers(other_user))).status_code == 403


@pytest.mark.asyncio
async def test_project_events_reach_subscribers(client: AsyncClient, test_user, emitter, callback_sink):
    headers = get_auth_headers(test_user)
    resp = await client.post(
        "/api/v1/callbacks/subscribers",
        json={"url": "https://hooks.test/agile", "event_mask": ["project.*"]},
        headers=headers,
    )
    assert resp.status_code == 201

    resp = await client.post("/api/v1/projects", json={"key": "evt", "name": "Events"}, headers=headers)
    assert resp.status_code == 201
    await emitter.aclose()

    assert len(callback_sink.requests) == 1
    delivered = callback_sink.requests[0]
    assert delivered.headers["X-Event-Type"] == "project"
    body = json.loads(delivered.content)
    assert body["action"] == "created"
    assert body["source"] == "project-service"
    assert body["project_id"] == resp.json()["id"]


# ============================================================
# REPOSITORY PASSTHROUGH
# ============================================================

@pytest.mark.asyncio
async def test_repository_branches(client: AsyncClient, test_user, other_user, fake_gateway):
    headers = get_auth_headers(test_user)
    project = (await client.post(
        "/api/v1/projects", json={"key": "repo", "name": "Repo", "init_repository": True}, headers=headers,
    )).json()
    repo_id = project["repository"]["id"]

    resp = await client.get(f"/api/v1/repositories/{repo_id}", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["default_branch"] == "main"

    resp = await client.post(f"/api/v1/repositories/{repo_id}/branches", json={"name": "feature/x"}, headers=headers)
    assert resp.status_code == 201

    resp = await client.get(f"/api/v1/repositories/{repo_id}/branches", headers=headers)
    assert sorted(b["name"] for b in resp.json()) == ["feature/x", "main"]

    resp = await client.delete(f"/api/v1/repositories/{repo_id}/branches/main", headers=headers)
    assert resp.status_code == 409

    resp = await client.get(f"/api/v1/repositories/{repo_id}", headers=get_auth_headers(other_user))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_repository_missing_on_gateway_is_upstream_404(client: AsyncClient, test_user, fake_gateway):
    headers = get_auth_headers(test_user)
    project = (await client.post(
        "/api/v1/projects", json={"key": "gone", "name": "Gone", "init_repository": True}, headers=headers,
    )).json()
    fake_gateway.repositories.clear()

    resp = await client.get(f"/api/v1/repositories/{project['repository']['id']}", headers=headers)
    assert resp.status_code == 502
    assert resp.json()["kind"] == "upstream_failure"
