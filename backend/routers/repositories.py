# routers/repositories.py — Repository and branch passthrough to the Git gateway
from typing import Optional, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

import git_gateway
from auth import get_current_user, CurrentUser
from database import get_db_session
from errors import Conflict, NotFound
from git_gateway import CreateBranchRequest, GitGatewayClient, get_git_gateway
from models import Repository
from project_store import ProjectStore

router = APIRouter(prefix="/api/v1/repositories", tags=["Repositories"])


# --- Schemas ---

class RepoOut(BaseModel):
    id: str
    project_id: str
    name: str
    description: Optional[str] = None
    visibility: str
    status: str
    default_branch: str
    clone_url: Optional[str] = None
    ssh_url: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class BranchCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    from_sha: Optional[str] = Field(None, max_length=64)
    protected: Optional[bool] = None


class BranchOut(BaseModel):
    name: str
    is_default: bool
    is_protected: bool
    commit_sha: Optional[str] = None


# --- Helpers ---

async def _shadow_for_user(db: AsyncSession, repository_id: str, user: CurrentUser) -> Repository:
    """Resolve the local shadow row and check the caller can see its project"""
    result = await db.execute(
        select(Repository).where(Repository.id == repository_id, Repository.deleted_at.is_(None))
    )
    shadow = result.scalar_one_or_none()
    if not shadow:
        raise NotFound("repository", repository_id)
    await ProjectStore(db).require_access(shadow.project_id, user)
    return shadow


def _repo_to_out(r: git_gateway.Repository) -> RepoOut:
    return RepoOut(
        id=r.id, project_id=r.project_id, name=r.name, description=r.description,
        visibility=r.visibility, status=r.status, default_branch=r.default_branch,
        clone_url=r.clone_url, ssh_url=r.ssh_url,
        created_at=r.created_at.isoformat() if r.created_at else None,
        updated_at=r.updated_at.isoformat() if r.updated_at else None,
    )


def _branch_to_out(b: git_gateway.Branch) -> BranchOut:
    return BranchOut(
        name=b.name, is_default=b.is_default, is_protected=b.is_protected,
        commit_sha=b.commit_sha,
    )


# --- Endpoints ---

@router.get("/{repository_id}", response_model=RepoOut)
async def get_repository(
    repository_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    gateway: GitGatewayClient = Depends(get_git_gateway),
):
    await _shadow_for_user(db, repository_id, user)
    return _repo_to_out(await gateway.get_repository(repository_id))


@router.get("/{repository_id}/branches", response_model=List[BranchOut])
async def list_branches(
    repository_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    gateway: GitGatewayClient = Depends(get_git_gateway),
):
    await _shadow_for_user(db, repository_id, user)
    return [_branch_to_out(b) for b in await gateway.list_branches(repository_id)]


@router.post("/{repository_id}/branches", response_model=BranchOut, status_code=201)
async def create_branch(
    repository_id: str,
    data: BranchCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    gateway: GitGatewayClient = Depends(get_git_gateway),
):
    await _shadow_for_user(db, repository_id, user)
    branch = await gateway.create_branch(repository_id, CreateBranchRequest(**data.model_dump()))
    return _branch_to_out(branch)


@router.delete("/{repository_id}/branches/{branch_name}", status_code=204)
async def delete_branch(
    repository_id: str,
    branch_name: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    gateway: GitGatewayClient = Depends(get_git_gateway),
):
    shadow = await _shadow_for_user(db, repository_id, user)
    if branch_name == shadow.default_branch:
        raise Conflict(f"cannot delete default branch {branch_name}")
    await gateway.delete_branch(repository_id, branch_name)
