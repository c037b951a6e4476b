# tests/conftest.py — Shared test fixtures
import os
import json
import uuid
from typing import Dict, List, Optional

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test_agileflow.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ["WEBHOOK_SECRET"] = "test-webhook-secret"

from models import Base
from auth import AuthService, CurrentUser
from callbacks import CallbackEmitter
from database import get_db_session
from git_gateway import GitGatewayClient
from project_store import ProjectStore
from main import app

TENANT_ID = "tenant-test"
GATEWAY_URL = "http://gateway.test/api/v1"


# ============================================================
# FAKE GIT GATEWAY
# ============================================================

class FakeGateway:
    """In-memory Git gateway behind an httpx.MockTransport."""

    def __init__(self):
        self.repositories: Dict[str, dict] = {}
        self.branches: Dict[str, List[dict]] = {}
        self.calls: List[tuple] = []
        self.fail_create: Optional[int] = None
        self.fail_delete: Optional[int] = None
        self.created_visibility: Optional[str] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.replace("/api/v1", "", 1)
        parts = [p for p in path.split("/") if p]
        self.calls.append((request.method, path))

        if parts == ["repositories"] and request.method == "POST":
            if self.fail_create:
                return httpx.Response(self.fail_create, json={"error": "gateway exploded"})
            body = json.loads(request.content)
            repo = {
                "id": str(uuid.uuid4()),
                "project_id": body["project_id"],
                "name": body["name"],
                "description": body.get("description"),
                "visibility": self.created_visibility or body.get("visibility", "private"),
                "status": "active",
                "default_branch": body.get("default_branch") or "main",
                "clone_url": f"https://git.test/{body['name']}.git",
            }
            self.repositories[repo["id"]] = repo
            self.branches[repo["id"]] = [{"name": repo["default_branch"], "is_default": True}]
            return httpx.Response(201, json={"success": True, "message": "created", "data": repo})

        if len(parts) >= 2 and parts[0] == "repositories":
            repo_id = parts[1]
            if repo_id not in self.repositories:
                return httpx.Response(404, json={"error": "repository not found"})
            if len(parts) == 2 and request.method == "GET":
                return httpx.Response(200, json=self.repositories[repo_id])
            if len(parts) == 2 and request.method == "DELETE":
                if self.fail_delete:
                    return httpx.Response(self.fail_delete, json={"error": "delete refused"})
                del self.repositories[repo_id]
                return httpx.Response(204)
            if parts[2:] == ["branches"] and request.method == "GET":
                return httpx.Response(200, json={"branches": self.branches[repo_id]})
            if parts[2:] == ["branches"] and request.method == "POST":
                branch = {"name": json.loads(request.content)["name"], "is_default": False}
                self.branches[repo_id].append(branch)
                return httpx.Response(201, json=branch)
            if len(parts) == 4 and parts[2] == "branches" and request.method == "DELETE":
                self.branches[repo_id] = [b for b in self.branches[repo_id] if b["name"] != parts[3]]
                return httpx.Response(204)

        return httpx.Response(404, json={"error": f"no route {request.method} {path}"})


class CallbackSink:
    """Collects outbound callback deliveries; answers with queued status codes."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.statuses: List[int] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses.pop(0) if self.statuses else 200
        return httpx.Response(status, text="ok" if status < 400 else "nope")


# ============================================================
# DATABASE
# ============================================================

@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


# ============================================================
# COLLABORATORS
# ============================================================

@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest_asyncio.fixture
async def gateway(fake_gateway):
    client = GitGatewayClient(
        base_url=GATEWAY_URL, api_key="test-gateway-key",
        transport=httpx.MockTransport(fake_gateway.handler),
    )
    yield client
    await client.aclose()


@pytest.fixture
def callback_sink():
    return CallbackSink()


@pytest_asyncio.fixture
async def emitter(callback_sink):
    em = CallbackEmitter(transport=httpx.MockTransport(callback_sink.handler), backoff=lambda attempt: 0)
    yield em
    await em.aclose()


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, gateway, emitter):
    """HTTP test client with overridden DB dependency and stubbed collaborators"""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    app.state.git_gateway = gateway
    app.state.callback_emitter = emitter
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ============================================================
# USERS & PROJECTS
# ============================================================

@pytest.fixture
def test_user() -> CurrentUser:
    return CurrentUser(id=str(uuid.uuid4()), tenant_id=TENANT_ID, email="dev@agileflow.test")


@pytest.fixture
def other_user() -> CurrentUser:
    return CurrentUser(id=str(uuid.uuid4()), tenant_id=TENANT_ID, email="outsider@agileflow.test")


@pytest_asyncio.fixture
async def test_project(db_session, test_user):
    """A project managed by test_user, without a repository"""
    project = await ProjectStore(db_session).create(
        tenant_id=TENANT_ID, key="core", name="Core Platform", created_by=test_user.id,
    )
    await db_session.commit()
    return project


def get_auth_headers(user: CurrentUser) -> dict:
    """Generate auth headers for a user"""
    token = AuthService.create_access_token({
        "sub": user.id,
        "tenant_id": user.tenant_id,
        "email": user.email,
    })
    return {"Authorization": f"Bearer {token}"}
