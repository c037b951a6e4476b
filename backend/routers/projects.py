# routers/projects.py — Project provisioning, membership and activity feed
from datetime import datetime
from typing import Optional, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from callbacks import CallbackEmitter, get_callback_emitter, project_event
from compensation import retry_failed_compensations
from database import get_db_session, atomic
from git_gateway import GitGatewayClient, get_git_gateway
from models import ActivityItem, Project, ProjectMember, Repository, RepoVisibility, ProjectStatus
from project_store import ProjectStore
from provisioning import ProjectProvisioningSaga, ProvisionRequest

router = APIRouter(prefix="/api/v1/projects", tags=["Projects"])


# ============================================================
# SCHEMAS
# ============================================================

class ProjectCreate(BaseModel):
    key: str = Field(..., min_length=2, max_length=20)
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    manager_id: Optional[str] = None
    init_repository: bool = False
    repository_name: Optional[str] = Field(None, max_length=255)
    visibility: str = "private"
    default_branch: str = "main"
    init_readme: bool = True


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    manager_id: Optional[str] = None
    status: Optional[str] = None


class RepositoryOut(BaseModel):
    id: str
    project_id: str
    name: str
    visibility: str
    default_branch: str
    clone_url: Optional[str] = None
    created_at: Optional[str] = None


class ProjectOut(BaseModel):
    id: str
    tenant_id: str
    key: str
    name: str
    description: Optional[str] = None
    manager_id: Optional[str] = None
    status: str
    created_by: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    repository: Optional[RepositoryOut] = None


class MemberAdd(BaseModel):
    user_id: str = Field(..., min_length=1)
    role_id: str = "member"


class MemberOut(BaseModel):
    id: str
    user_id: str
    role_id: str
    added_by: Optional[str] = None
    added_at: Optional[str] = None


class ActivityOut(BaseModel):
    id: str
    event_id: str
    event_type: str
    action: str
    repository_id: Optional[str] = None
    actor_id: Optional[str] = None
    summary: str
    details: dict = {}
    occurred_at: Optional[str] = None
    created_at: Optional[str] = None


# ============================================================
# HELPERS
# ============================================================

def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() if isinstance(dt, datetime) else str(dt)


def _repo_to_out(r: Repository) -> RepositoryOut:
    return RepositoryOut(
        id=r.id, project_id=r.project_id, name=r.name,
        visibility=RepoVisibility(r.visibility).value,
        default_branch=r.default_branch, clone_url=r.clone_url,
        created_at=_ts(r.created_at),
    )


def _project_to_out(p: Project, repository: Optional[Repository] = None) -> ProjectOut:
    return ProjectOut(
        id=p.id,
        tenant_id=p.tenant_id,
        key=p.key,
        name=p.name,
        description=p.description,
        manager_id=p.manager_id,
        status=ProjectStatus(p.status).value,
        created_by=p.created_by,
        created_at=_ts(p.created_at),
        updated_at=_ts(p.updated_at),
        repository=_repo_to_out(repository) if repository else None,
    )


def _member_to_out(m: ProjectMember) -> MemberOut:
    return MemberOut(
        id=m.id, user_id=m.user_id, role_id=m.role_id,
        added_by=m.added_by, added_at=_ts(m.added_at),
    )


# ============================================================
# PROJECT ENDPOINTS
# ============================================================

@router.post("", response_model=ProjectOut, status_code=201)
async def create_project(
    data: ProjectCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    gateway: GitGatewayClient = Depends(get_git_gateway),
    emitter: CallbackEmitter = Depends(get_callback_emitter),
):
    """Create a project, optionally with a Git repository (compensated on failure)"""
    saga = ProjectProvisioningSaga(db, gateway, emitter)
    result = await saga.run(ProvisionRequest(**data.model_dump()), user)
    return _project_to_out(result.project, result.repository)


@router.get("", response_model=List[ProjectOut])
async def list_projects(
    status: Optional[str] = Query(None, pattern="^(active|archived)$"),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Projects the caller manages or belongs to"""
    projects = await ProjectStore(db).list_for_user(user, status=status)
    return [_project_to_out(p) for p in projects]


@router.post("/compensations/retry")
async def retry_compensations(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    gateway: GitGatewayClient = Depends(get_git_gateway),
):
    """Re-run failed or orphaned saga compensations"""
    return await retry_failed_compensations(db, gateway)


@router.get("/{project_id}", response_model=ProjectOut)
async def get_project(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    project = await ProjectStore(db).require_access(project_id, user)
    return _project_to_out(project)


@router.patch("/{project_id}", response_model=ProjectOut)
async def update_project(
    project_id: str,
    data: ProjectUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    emitter: CallbackEmitter = Depends(get_callback_emitter),
):
    store = ProjectStore(db)
    async with atomic(db):
        project = await store.require_access(project_id, user)
        await store.update(project, data.model_dump(exclude_unset=True))
    emitter.publish(project_event(
        "project", "updated", project.id,
        resource={"id": project.id, "key": project.key, "name": project.name},
    ))
    return _project_to_out(project)


@router.delete("/{project_id}", status_code=204)
async def delete_project(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    emitter: CallbackEmitter = Depends(get_callback_emitter),
):
    """Soft-delete a project; its tasks, boards and sprints disappear with it"""
    store = ProjectStore(db)
    async with atomic(db):
        await store.require_access(project_id, user)
        await store.soft_delete(project_id)
    emitter.publish(project_event("project", "deleted", project_id))


# ============================================================
# MEMBERS
# ============================================================

@router.get("/{project_id}/members", response_model=List[MemberOut])
async def list_members(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    store = ProjectStore(db)
    await store.require_access(project_id, user)
    return [_member_to_out(m) for m in await store.list_members(project_id)]


@router.post("/{project_id}/members", response_model=MemberOut, status_code=201)
async def add_member(
    project_id: str,
    data: MemberAdd,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    store = ProjectStore(db)
    async with atomic(db):
        await store.require_access(project_id, user)
        member = await store.add_member(project_id, data.user_id, data.role_id, added_by=user.id)
    return _member_to_out(member)


@router.delete("/{project_id}/members/{user_id}", status_code=204)
async def remove_member(
    project_id: str,
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    store = ProjectStore(db)
    async with atomic(db):
        await store.require_access(project_id, user)
        await store.remove_member(project_id, user_id, removed_by=user.id)


# ============================================================
# ACTIVITY & REPOSITORIES
# ============================================================

@router.get("/{project_id}/activity", response_model=List[ActivityOut])
async def list_activity(
    project_id: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Git activity recorded from gateway webhooks, newest first"""
    await ProjectStore(db).require_access(project_id, user)
    result = await db.execute(
        select(ActivityItem)
        .where(ActivityItem.project_id == project_id)
        .order_by(ActivityItem.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    return [
        ActivityOut(
            id=a.id, event_id=a.event_id, event_type=a.event_type, action=a.action,
            repository_id=a.repository_id, actor_id=a.actor_id, summary=a.summary,
            details=a.details or {}, occurred_at=_ts(a.occurred_at), created_at=_ts(a.created_at),
        )
        for a in result.scalars().all()
    ]


@router.get("/{project_id}/repositories", response_model=List[RepositoryOut])
async def list_project_repositories(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await ProjectStore(db).require_access(project_id, user)
    result = await db.execute(
        select(Repository)
        .where(Repository.project_id == project_id, Repository.deleted_at.is_(None))
        .order_by(Repository.created_at.asc())
    )
    return [_repo_to_out(r) for r in result.scalars().all()]
