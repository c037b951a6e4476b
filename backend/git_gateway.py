# git_gateway.py — HTTP client for the external Git gateway service
# One long-lived httpx.AsyncClient per process (created in the app lifespan).
# Non-2xx responses raise UpstreamFailure; timeouts raise GatewayTimeout.

import os
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from fastapi import Request
from pydantic import BaseModel, Field

from errors import GatewayTimeout, UpstreamFailure

logger = logging.getLogger("agileflow.gateway")

GIT_GATEWAY_URL = os.getenv("GIT_GATEWAY_URL", "http://localhost:8083/api/v1")
GIT_GATEWAY_API_KEY = os.getenv("GIT_GATEWAY_API_KEY", "")
GIT_GATEWAY_TIMEOUT = float(os.getenv("GIT_GATEWAY_TIMEOUT", "30"))


# ============================================================
# WIRE MODELS
# ============================================================

class Repository(BaseModel):
    id: str
    project_id: str
    name: str
    description: Optional[str] = None
    visibility: str = "private"
    status: str = "active"
    default_branch: str = "main"
    clone_url: Optional[str] = None
    ssh_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Branch(BaseModel):
    name: str
    repository_id: Optional[str] = None
    commit_sha: Optional[str] = None
    is_default: bool = False
    is_protected: bool = False


class RepositoryListResponse(BaseModel):
    repositories: List[Repository] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 20


class CreateRepositoryRequest(BaseModel):
    project_id: str
    name: str
    description: Optional[str] = None
    visibility: str = "private"
    default_branch: Optional[str] = None
    init_readme: bool = True


class UpdateRepositoryRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    visibility: Optional[str] = None
    default_branch: Optional[str] = None


class CreateBranchRequest(BaseModel):
    name: str
    from_sha: Optional[str] = None
    protected: Optional[bool] = None


def _unwrap(body: Any) -> Any:
    # The gateway answers either with the bare object or {success, message, data}
    if isinstance(body, dict) and "data" in body and ("success" in body or "message" in body):
        if body.get("success") is False:
            raise UpstreamFailure(body.get("message") or "gateway reported failure")
        return body["data"]
    return body


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        err = body.get("error") or body.get("message")
        if isinstance(err, dict):
            err = err.get("message")
        if err:
            return str(err)[:200]
    return f"HTTP {response.status_code}"


# ============================================================
# CLIENT
# ============================================================

class GitGatewayClient:
    """Async client for the Git gateway's repository API."""

    def __init__(
        self,
        base_url: str = GIT_GATEWAY_URL,
        api_key: str = GIT_GATEWAY_API_KEY,
        timeout: float = GIT_GATEWAY_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            logger.error(f"Git gateway {method} {path} timed out")
            raise GatewayTimeout(f"git gateway {method} {path} timed out") from exc
        except httpx.HTTPError as exc:
            logger.error(f"Git gateway {method} {path} failed: {exc}")
            raise UpstreamFailure(f"git gateway unreachable: {exc}") from exc

        logger.debug(f"Git gateway {method} {path} -> {response.status_code}")
        if response.status_code >= 400:
            message = _error_message(response)
            if response.status_code != 404:
                logger.warning(f"Git gateway {method} {path} returned {response.status_code}: {message}")
            raise UpstreamFailure(message, upstream_status=response.status_code)

        if response.status_code == 204 or not response.content:
            return None
        return _unwrap(response.json())

    # ── Repositories ─────────────────────────────────────────

    async def create_repository(self, req: CreateRepositoryRequest) -> Repository:
        data = await self._request("POST", "/repositories", json=req.model_dump(exclude_none=True))
        repo = Repository.model_validate(data)
        logger.info(f"Repository {repo.id} ({repo.name}) created for project {req.project_id}")
        return repo

    async def get_repository(self, repository_id: str) -> Repository:
        data = await self._request("GET", f"/repositories/{repository_id}")
        return Repository.model_validate(data)

    async def update_repository(self, repository_id: str, req: UpdateRepositoryRequest) -> Repository:
        data = await self._request(
            "PATCH", f"/repositories/{repository_id}", json=req.model_dump(exclude_none=True),
        )
        return Repository.model_validate(data)

    async def delete_repository(self, repository_id: str) -> None:
        await self._request("DELETE", f"/repositories/{repository_id}")
        logger.info(f"Repository {repository_id} deleted on gateway")

    async def list_repositories(
        self, project_id: Optional[str] = None, page: int = 1, page_size: int = 20,
    ) -> RepositoryListResponse:
        params: Dict[str, Any] = {"page": page, "page_size": page_size}
        if project_id:
            params["project_id"] = project_id
        data = await self._request("GET", "/repositories", params=params)
        return RepositoryListResponse.model_validate(data or {})

    # ── Branches ─────────────────────────────────────────────

    async def create_branch(self, repository_id: str, req: CreateBranchRequest) -> Branch:
        data = await self._request(
            "POST", f"/repositories/{repository_id}/branches", json=req.model_dump(exclude_none=True),
        )
        return Branch.model_validate(data)

    async def list_branches(self, repository_id: str) -> List[Branch]:
        data = await self._request("GET", f"/repositories/{repository_id}/branches")
        if isinstance(data, dict):
            data = data.get("branches", [])
        return [Branch.model_validate(b) for b in data or []]

    async def delete_branch(self, repository_id: str, branch_name: str) -> None:
        await self._request("DELETE", f"/repositories/{repository_id}/branches/{branch_name}")


def get_git_gateway(request: Request) -> GitGatewayClient:
    """FastAPI dependency: the process-wide client created in the app lifespan."""
    return request.app.state.git_gateway
