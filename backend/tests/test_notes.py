# tests/test_notes.py — Task comments and work logs
import pytest
import pytest_asyncio
from httpx import AsyncClient

from project_store import ProjectStore
from tests.conftest import get_auth_headers


@pytest_asyncio.fixture
async def task(client: AsyncClient, test_user, test_project):
    resp = await client.post(
        f"/api/v1/agile/projects/{test_project.id}/tasks",
        json={"title": "Write docs", "original_estimate": 8},
        headers=get_auth_headers(test_user),
    )
    return resp.json()


@pytest.mark.asyncio
async def test_comment_thread(client: AsyncClient, test_user, task):
    headers = get_auth_headers(test_user)
    for text in ("first", "second"):
        resp = await client.post(f"/api/v1/agile/tasks/{task['id']}/comments", json={"content": text}, headers=headers)
        assert resp.status_code == 201
        assert resp.json()["author_id"] == test_user.id

    resp = await client.get(f"/api/v1/agile/tasks/{task['id']}/comments", headers=headers)
    assert [c["content"] for c in resp.json()] == ["first", "second"]


@pytest.mark.asyncio
async def test_only_author_edits_comment(client: AsyncClient, db_session, test_user, other_user, test_project, task):
    await ProjectStore(db_session).add_member(test_project.id, other_user.id, "member", added_by=test_user.id)
    await db_session.commit()

    comment = (await client.post(
        f"/api/v1/agile/tasks/{task['id']}/comments", json={"content": "mine"}, headers=get_auth_headers(test_user),
    )).json()

    resp = await client.patch(
        f"/api/v1/agile/comments/{comment['id']}", json={"content": "hijacked"}, headers=get_auth_headers(other_user),
    )
    assert resp.status_code == 403
    resp = await client.delete(f"/api/v1/agile/comments/{comment['id']}", headers=get_auth_headers(other_user))
    assert resp.status_code == 403

    resp = await client.patch(
        f"/api/v1/agile/comments/{comment['id']}", json={"content": "edited"}, headers=get_auth_headers(test_user),
    )
    assert resp.status_code == 200
    assert resp.json()["content"] == "edited"

    resp = await client.delete(f"/api/v1/agile/comments/{comment['id']}", headers=get_auth_headers(test_user))
    assert resp.status_code == 204
    resp = await client.get(f"/api/v1/agile/tasks/{task['id']}/comments", headers=get_auth_headers(test_user))
    assert resp.json() == []


@pytest.mark.asyncio
async def test_work_log_accumulates_logged_time(client: AsyncClient, test_user, task):
    headers = get_auth_headers(test_user)
    first = await client.post(
        f"/api/v1/agile/tasks/{task['id']}/worklogs",
        json={"time_spent": 2.5, "work_date": "2026-03-02", "description": "outline"},
        headers=headers,
    )
    assert first.status_code == 201
    await client.post(f"/api/v1/agile/tasks/{task['id']}/worklogs", json={"time_spent": 1.5}, headers=headers)

    resp = await client.get(f"/api/v1/agile/tasks/{task['id']}", headers=headers)
    assert resp.json()["logged_time"] == pytest.approx(4.0)

    resp = await client.delete(f"/api/v1/agile/worklogs/{first.json()['id']}", headers=headers)
    assert resp.status_code == 204
    resp = await client.get(f"/api/v1/agile/tasks/{task['id']}", headers=headers)
    assert resp.json()["logged_time"] == pytest.approx(1.5)

    resp = await client.get(f"/api/v1/agile/tasks/{task['id']}/worklogs", headers=headers)
    assert len(resp.json()) == 1


@pytest.mark.asyncio
async def test_work_log_bounds(client: AsyncClient, test_user, task):
    headers = get_auth_headers(test_user)
    for hours in (0, 24.5):
        resp = await client.post(f"/api/v1/agile/tasks/{task['id']}/worklogs", json={"time_spent": hours}, headers=headers)
        assert resp.status_code == 422


@pytest.mark.asyncio
async def test_notes_on_deleted_task_are_not_found(client: AsyncClient, test_user, task):
    headers = get_auth_headers(test_user)
    await client.delete(f"/api/v1/agile/tasks/{task['id']}", headers=headers)
    resp = await client.post(f"/api/v1/agile/tasks/{task['id']}/comments", json={"content": "late"}, headers=headers)
    assert resp.status_code == 404
