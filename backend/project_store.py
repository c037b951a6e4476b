# project_store.py — Project persistence and access checks
# Everything else in the engine asks this module whether a caller may touch a project.

import re
import logging
from typing import List, Optional

from sqlalchemy import select, exists, or_, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser
from errors import Conflict, Forbidden, NotFound, ValidationFailed
from models import Project, ProjectMember, ProjectStatus, new_uuid, utcnow

logger = logging.getLogger("agileflow.projects")

PROJECT_KEY_RE = re.compile(r"^[A-Za-z][A-Za-z0-9-]*$")
PROJECT_KEY_MIN = 2
PROJECT_KEY_MAX = 20
PROJECT_NAME_MAX = 255


def validate_project_key(key: str) -> str:
    """Return the stored (lowercased) form of a project key."""
    if key is None or not (PROJECT_KEY_MIN <= len(key) <= PROJECT_KEY_MAX):
        raise ValidationFailed(f"project key must be {PROJECT_KEY_MIN}-{PROJECT_KEY_MAX} characters")
    if not PROJECT_KEY_RE.match(key):
        raise ValidationFailed("project key must start with a letter and contain only letters, digits or '-'")
    return key.lower()


def validate_project_name(name: str) -> str:
    name = (name or "").strip()
    if not name or len(name) > PROJECT_NAME_MAX:
        raise ValidationFailed(f"project name must be 1-{PROJECT_NAME_MAX} characters")
    return name


class ProjectStore:
    """Project CRUD, membership and the (project, user) access check."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ── Access ───────────────────────────────────────────────

    async def has_access(self, project_id: str, user_id: str, tenant_id: str) -> bool:
        member_exists = exists().where(
            ProjectMember.project_id == Project.id,
            ProjectMember.user_id == user_id,
        )
        stmt = select(Project.id).where(
            Project.id == project_id,
            Project.tenant_id == tenant_id,
            Project.deleted_at.is_(None),
            or_(Project.manager_id == user_id, member_exists),
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def get_project(self, project_id: str, tenant_id: str) -> Project:
        stmt = select(Project).where(
            Project.id == project_id,
            Project.tenant_id == tenant_id,
            Project.deleted_at.is_(None),
        )
        result = await self.db.execute(stmt)
        project = result.scalar_one_or_none()
        if not project:
            raise NotFound("project", project_id)
        return project

    async def require_access(self, project_id: str, user: CurrentUser) -> Project:
        project = await self.get_project(project_id, user.tenant_id)
        if not await self.has_access(project_id, user.id, user.tenant_id):
            raise Forbidden(f"no access to project {project_id}")
        return project

    async def list_for_user(self, user: CurrentUser, status: Optional[str] = None) -> List[Project]:
        member_of = select(ProjectMember.project_id).where(ProjectMember.user_id == user.id)
        stmt = (
            select(Project)
            .where(
                Project.tenant_id == user.tenant_id,
                Project.deleted_at.is_(None),
                or_(Project.manager_id == user.id, Project.id.in_(member_of)),
            )
            .order_by(Project.created_at.desc())
        )
        if status:
            stmt = stmt.where(Project.status == ProjectStatus(status))
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    # ── Mutations (caller owns the transaction) ──────────────

    async def key_taken(self, tenant_id: str, key: str) -> bool:
        stmt = select(Project.id).where(
            Project.tenant_id == tenant_id,
            Project.key == key,
            Project.deleted_at.is_(None),
        )
        result = await self.db.execute(stmt)
        return result.first() is not None

    async def create(
        self,
        *,
        tenant_id: str,
        key: str,
        name: str,
        created_by: str,
        description: Optional[str] = None,
        manager_id: Optional[str] = None,
    ) -> Project:
        if await self.key_taken(tenant_id, key):
            raise Conflict(f"project key '{key}' already exists")

        project = Project(
            id=new_uuid(),
            tenant_id=tenant_id,
            key=key,
            name=name,
            description=description,
            manager_id=manager_id or created_by,
            status=ProjectStatus.ACTIVE,
            task_sequence=0,
            created_by=created_by,
        )
        self.db.add(project)
        self.db.add(ProjectMember(
            id=new_uuid(), project_id=project.id, user_id=created_by,
            role_id="owner", added_by=created_by,
        ))
        if project.manager_id != created_by:
            self.db.add(ProjectMember(
                id=new_uuid(), project_id=project.id, user_id=project.manager_id,
                role_id="manager", added_by=created_by,
            ))
        try:
            await self.db.flush()
        except IntegrityError as exc:
            raise Conflict(f"project key '{key}' already exists") from exc
        return project

    async def update(self, project: Project, changes: dict) -> Project:
        if changes.get("name") is not None:
            project.name = validate_project_name(changes["name"])
        if "description" in changes:
            project.description = changes["description"]
        if changes.get("manager_id") is not None:
            project.manager_id = changes["manager_id"]
        if changes.get("status") is not None:
            try:
                project.status = ProjectStatus(changes["status"])
            except ValueError:
                raise ValidationFailed("status must be one of: active, archived")
        project.updated_at = utcnow()
        await self.db.flush()
        return project

    async def soft_delete(self, project_id: str) -> bool:
        """Mark a project deleted. Returns False when it was already gone."""
        result = await self.db.execute(select(Project).where(Project.id == project_id))
        project = result.scalar_one_or_none()
        if project is None or project.deleted_at is not None:
            return False
        project.deleted_at = utcnow()
        await self.db.flush()
        logger.info(f"Project {project_id} soft-deleted")
        return True

    # ── Members ──────────────────────────────────────────────

    async def list_members(self, project_id: str) -> List[ProjectMember]:
        stmt = (
            select(ProjectMember)
            .where(ProjectMember.project_id == project_id)
            .order_by(ProjectMember.added_at.asc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def add_member(self, project_id: str, user_id: str, role_id: str, added_by: str) -> ProjectMember:
        existing = await self.db.execute(
            select(ProjectMember.id).where(
                and_(ProjectMember.project_id == project_id, ProjectMember.user_id == user_id)
            )
        )
        if existing.first() is not None:
            raise Conflict(f"user {user_id} is already a member")
        member = ProjectMember(
            id=new_uuid(), project_id=project_id, user_id=user_id,
            role_id=role_id, added_by=added_by,
        )
        self.db.add(member)
        await self.db.flush()
        return member

    async def remove_member(self, project_id: str, user_id: str, removed_by: str) -> None:
        if user_id == removed_by:
            raise ValidationFailed("members cannot remove themselves")
        result = await self.db.execute(
            select(ProjectMember).where(
                ProjectMember.project_id == project_id,
                ProjectMember.user_id == user_id,
            )
        )
        member = result.scalar_one_or_none()
        if not member:
            raise NotFound("member", user_id)
        await self.db.delete(member)
        await self.db.flush()
