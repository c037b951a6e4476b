# tests/test_sprints.py — Sprint lifecycle and epic router tests
import pytest
from httpx import AsyncClient

from tests.conftest import get_auth_headers


async def _sprint(client: AsyncClient, headers: dict, project_id: str, **extra) -> dict:
    payload = {"name": "Sprint 1", "start_date": "2026-01-05", "end_date": "2026-01-19", "capacity": 30}
    payload.update(extra)
    resp = await client.post(f"/api/v1/agile/projects/{project_id}/sprints", json=payload, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.mark.asyncio
async def test_sprint_lifecycle(client: AsyncClient, test_user, test_project):
    """planned → active → closed, and nothing else"""
    headers = get_auth_headers(test_user)
    sprint = await _sprint(client, headers, test_project.id)
    assert sprint["status"] == "planned"

    resp = await client.post(f"/api/v1/agile/sprints/{sprint['id']}/complete", headers=headers)
    assert resp.status_code == 409
    assert resp.json()["kind"] == "illegal_transition"

    resp = await client.post(f"/api/v1/agile/sprints/{sprint['id']}/start", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "active"

    assert (await client.post(f"/api/v1/agile/sprints/{sprint['id']}/start", headers=headers)).status_code == 409

    resp = await client.post(f"/api/v1/agile/sprints/{sprint['id']}/complete", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "closed"


@pytest.mark.asyncio
async def test_sprint_dates_validated(client: AsyncClient, test_user, test_project):
    headers = get_auth_headers(test_user)
    resp = await client.post(
        f"/api/v1/agile/projects/{test_project.id}/sprints",
        json={"name": "Backwards", "start_date": "2026-02-01", "end_date": "2026-01-01"},
        headers=headers,
    )
    assert resp.status_code == 400

    sprint = await _sprint(client, headers, test_project.id)
    resp = await client.patch(
        f"/api/v1/agile/sprints/{sprint['id']}", json={"end_date": "2025-12-01"}, headers=headers,
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_list_sprints_by_status(client: AsyncClient, test_user, test_project):
    headers = get_auth_headers(test_user)
    first = await _sprint(client, headers, test_project.id)
    await _sprint(client, headers, test_project.id, name="Sprint 2", start_date="2026-01-20", end_date="2026-02-02")
    await client.post(f"/api/v1/agile/sprints/{first['id']}/start", headers=headers)

    resp = await client.get(f"/api/v1/agile/projects/{test_project.id}/sprints", headers=headers)
    assert [s["name"] for s in resp.json()] == ["Sprint 2", "Sprint 1"]

    resp = await client.get(
        f"/api/v1/agile/projects/{test_project.id}/sprints", params={"status": "active"}, headers=headers,
    )
    assert [s["id"] for s in resp.json()] == [first["id"]]


@pytest.mark.asyncio
async def test_sprint_tasks_form_their_own_scope(client: AsyncClient, test_user, test_project):
    headers = get_auth_headers(test_user)
    sprint = await _sprint(client, headers, test_project.id)
    base = f"/api/v1/agile/projects/{test_project.id}/tasks"

    backlog = (await client.post(base, json={"title": "Backlog item"}, headers=headers)).json()
    planned = (await client.post(base, json={"title": "Sprint item", "sprint_id": sprint["id"]}, headers=headers)).json()
    assert planned["sprint"]["name"] == "Sprint 1"

    resp = await client.get(base, params={"sprint_id": sprint["id"]}, headers=headers)
    assert [t["id"] for t in resp.json()] == [planned["id"]]
    resp = await client.get(base, params={"backlog": True}, headers=headers)
    assert [t["id"] for t in resp.json()] == [backlog["id"]]

    resp = await client.post(
        f"/api/v1/agile/tasks/{backlog['id']}/move",
        json={"target_sprint_id": sprint["id"]},
        headers=headers,
    )
    assert resp.status_code == 200
    resp = await client.get(base, params={"sprint_id": sprint["id"]}, headers=headers)
    assert [t["title"] for t in resp.json()] == ["Sprint item", "Backlog item"]


@pytest.mark.asyncio
async def test_sprint_reassignment_keeps_rank(client: AsyncClient, test_user, test_project):
    headers = get_auth_headers(test_user)
    sprint = await _sprint(client, headers, test_project.id)
    task = (await client.post(
        f"/api/v1/agile/projects/{test_project.id}/tasks", json={"title": "Carry over"}, headers=headers,
    )).json()

    resp = await client.patch(f"/api/v1/agile/tasks/{task['id']}", json={"sprint_id": sprint["id"]}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["sprint"]["id"] == sprint["id"]
    assert resp.json()["rank"] == task["rank"]


@pytest.mark.asyncio
async def test_unknown_sprint_is_not_found(client: AsyncClient, test_user, test_project):
    headers = get_auth_headers(test_user)
    resp = await client.post(
        f"/api/v1/agile/projects/{test_project.id}/tasks",
        json={"title": "Lost", "sprint_id": "00000000-0000-0000-0000-000000000000"},
        headers=headers,
    )
    assert resp.status_code == 404
    assert resp.json()["kind"] == "not_found"


@pytest.mark.asyncio
async def test_delete_sprint(client: AsyncClient, test_user, test_project):
    headers = get_auth_headers(test_user)
    sprint = await _sprint(client, headers, test_project.id)
    assert (await client.delete(f"/api/v1/agile/sprints/{sprint['id']}", headers=headers)).status_code == 204
    assert (await client.get(f"/api/v1/agile/sprints/{sprint['id']}", headers=headers)).status_code == 404


@pytest.mark.asyncio
async def test_deleted_sprint_hides_its_tasks(client: AsyncClient, test_user, test_project):
    headers = get_auth_headers(test_user)
    sprint = await _sprint(client, headers, test_project.id)
    base = f"/api/v1/agile/projects/{test_project.id}/tasks"
    await client.post(base, json={"title": "Planned", "sprint_id": sprint["id"]}, headers=headers)

    resp = await client.get(base, params={"sprint_id": sprint["id"]}, headers=headers)
    assert len(resp.json()) == 1

    await client.delete(f"/api/v1/agile/sprints/{sprint['id']}", headers=headers)
    resp = await client.get(base, params={"sprint_id": sprint["id"]}, headers=headers)
    assert resp.status_code == 200
    assert resp.json() == []


@pytest.mark.asyncio
async def test_deleted_epic_hides_its_tasks(client: AsyncClient, test_user, test_project):
    headers = get_auth_headers(test_user)
    epic = (await client.post(
        f"/api/v1/agile/projects/{test_project.id}/epics", json={"name": "Search"}, headers=headers,
    )).json()
    base = f"/api/v1/agile/projects/{test_project.id}/tasks"
    await client.post(base, json={"title": "Indexer", "epic_id": epic["id"]}, headers=headers)

    await client.delete(f"/api/v1/agile/epics/{epic['id']}", headers=headers)
    resp = await client.get(base, params={"epic_id": epic["id"]}, headers=headers)
    assert resp.json() == []


# ============================================================
# EPICS
# ============================================================

@pytest.mark.asyncio
async def test_epic_crud(client: AsyncClient, test_user, test_project):
    headers = get_auth_headers(test_user)
    resp = await client.post(
        f"/api/v1/agile/projects/{test_project.id}/epics",
        json={"name": "Checkout", "color": "#ff8800", "goal": "Ship payments"},
        headers=headers,
    )
    assert resp.status_code == 201
    epic = resp.json()
    assert epic["status"] == "open"

    resp = await client.patch(f"/api/v1/agile/epics/{epic['id']}", json={"status": "in_progress"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "in_progress"

    task = await client.post(
        f"/api/v1/agile/projects/{test_project.id}/tasks",
        json={"title": "Card form", "epic_id": epic["id"]},
        headers=headers,
    )
    assert task.json()["epic"]["name"] == "Checkout"

    resp = await client.get(f"/api/v1/agile/projects/{test_project.id}/epics", headers=headers)
    assert [e["id"] for e in resp.json()] == [epic["id"]]

    assert (await client.delete(f"/api/v1/agile/epics/{epic['id']}", headers=headers)).status_code == 204
    assert (await client.get(f"/api/v1/agile/epics/{epic['id']}", headers=headers)).status_code == 404


@pytest.mark.asyncio
async def test_epic_color_validated(client: AsyncClient, test_user, test_project):
    headers = get_auth_headers(test_user)
    resp = await client.post(
        f"/api/v1/agile/projects/{test_project.id}/epics",
        json={"name": "Bad color", "color": "red1234"},
        headers=headers,
    )
    assert resp.status_code == 400
