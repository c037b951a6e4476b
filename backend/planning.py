# planning.py — Sprints and epics
# Sprint lifecycle: planned → active → closed. Closing a sprint leaves its tasks untouched.

import re
import logging
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser
from database import atomic
from errors import IllegalTransition, NotFound, ValidationFailed
from models import Epic, EpicStatus, Sprint, SprintStatus, new_uuid, utcnow
from project_store import ProjectStore
from task_engine import coerce_enum

logger = logging.getLogger("agileflow.planning")

COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")


def _check_dates(start: Optional[date], end: Optional[date]) -> None:
    if start and end and end < start:
        raise ValidationFailed("end_date must not be before start_date")


class PlanningEngine:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.projects = ProjectStore(db)

    # ============================================================
    # SPRINTS
    # ============================================================

    async def _sprint_for_user(self, sprint_id: str, user: CurrentUser) -> Sprint:
        result = await self.db.execute(
            select(Sprint).where(Sprint.id == sprint_id, Sprint.deleted_at.is_(None))
        )
        sprint = result.scalar_one_or_none()
        if not sprint:
            raise NotFound("sprint", sprint_id)
        await self.projects.require_access(sprint.project_id, user)
        return sprint

    async def create_sprint(self, project_id: str, data: Dict[str, Any], user: CurrentUser) -> Sprint:
        _check_dates(data["start_date"], data["end_date"])
        if (data.get("capacity") or 0) < 0:
            raise ValidationFailed("capacity must be >= 0")

        async with atomic(self.db):
            await self.projects.require_access(project_id, user)
            sprint = Sprint(
                id=new_uuid(),
                project_id=project_id,
                name=data["name"],
                description=data.get("description"),
                goal=data.get("goal"),
                status=SprintStatus.PLANNED,
                start_date=data["start_date"],
                end_date=data["end_date"],
                capacity=data.get("capacity") or 0,
                created_by=user.id,
            )
            self.db.add(sprint)
            await self.db.flush()
            logger.info(f"Sprint '{sprint.name}' planned for project {project_id}")
        return sprint

    async def get_sprint(self, sprint_id: str, user: CurrentUser) -> Sprint:
        return await self._sprint_for_user(sprint_id, user)

    async def list_sprints(self, project_id: str, user: CurrentUser, status: Optional[str] = None) -> List[Sprint]:
        await self.projects.require_access(project_id, user)
        stmt = select(Sprint).where(Sprint.project_id == project_id, Sprint.deleted_at.is_(None))
        if status:
            stmt = stmt.where(Sprint.status == coerce_enum(SprintStatus, status, "status"))
        result = await self.db.execute(stmt.order_by(Sprint.start_date.desc(), Sprint.created_at.desc()))
        return list(result.scalars().all())

    async def update_sprint(self, sprint_id: str, changes: Dict[str, Any], user: CurrentUser) -> Sprint:
        async with atomic(self.db):
            sprint = await self._sprint_for_user(sprint_id, user)
            start = changes.get("start_date") or sprint.start_date
            end = changes.get("end_date") or sprint.end_date
            _check_dates(start, end)
            if changes.get("capacity") is not None and changes["capacity"] < 0:
                raise ValidationFailed("capacity must be >= 0")

            for field in ("name", "start_date", "end_date", "capacity"):
                if changes.get(field) is not None:
                    setattr(sprint, field, changes[field])
            for field in ("description", "goal"):
                if field in changes:
                    setattr(sprint, field, changes[field])
            sprint.updated_at = utcnow()
        return sprint

    async def delete_sprint(self, sprint_id: str, user: CurrentUser) -> None:
        async with atomic(self.db):
            sprint = await self._sprint_for_user(sprint_id, user)
            sprint.deleted_at = utcnow()

    async def _advance(self, sprint_id: str, user: CurrentUser, expected: SprintStatus, target: SprintStatus) -> Sprint:
        async with atomic(self.db):
            sprint = await self._sprint_for_user(sprint_id, user)
            if sprint.status != expected:
                raise IllegalTransition("sprint", SprintStatus(sprint.status).value, target.value)
            sprint.status = target
            sprint.updated_at = utcnow()
            logger.info(f"Sprint {sprint_id} {expected.value} -> {target.value}")
        return sprint

    async def start_sprint(self, sprint_id: str, user: CurrentUser) -> Sprint:
        return await self._advance(sprint_id, user, SprintStatus.PLANNED, SprintStatus.ACTIVE)

    async def complete_sprint(self, sprint_id: str, user: CurrentUser) -> Sprint:
        return await self._advance(sprint_id, user, SprintStatus.ACTIVE, SprintStatus.CLOSED)

    # ============================================================
    # EPICS
    # ============================================================

    @staticmethod
    def _check_color(color: Optional[str]) -> None:
        if color is not None and not COLOR_RE.match(color):
            raise ValidationFailed("color must look like #RRGGBB")

    async def _epic_for_user(self, epic_id: str, user: CurrentUser) -> Epic:
        result = await self.db.execute(
            select(Epic).where(Epic.id == epic_id, Epic.deleted_at.is_(None))
        )
        epic = result.scalar_one_or_none()
        if not epic:
            raise NotFound("epic", epic_id)
        await self.projects.require_access(epic.project_id, user)
        return epic

    async def create_epic(self, project_id: str, data: Dict[str, Any], user: CurrentUser) -> Epic:
        self._check_color(data.get("color"))
        _check_dates(data.get("start_date"), data.get("end_date"))

        async with atomic(self.db):
            await self.projects.require_access(project_id, user)
            epic = Epic(
                id=new_uuid(),
                project_id=project_id,
                name=data["name"],
                description=data.get("description"),
                status=coerce_enum(EpicStatus, data.get("status") or EpicStatus.OPEN, "status"),
                color=data.get("color"),
                start_date=data.get("start_date"),
                end_date=data.get("end_date"),
                goal=data.get("goal"),
                success_criteria=data.get("success_criteria"),
                created_by=user.id,
            )
            self.db.add(epic)
            await self.db.flush()
        return epic

    async def get_epic(self, epic_id: str, user: CurrentUser) -> Epic:
        return await self._epic_for_user(epic_id, user)

    async def list_epics(self, project_id: str, user: CurrentUser) -> List[Epic]:
        await self.projects.require_access(project_id, user)
        result = await self.db.execute(
            select(Epic)
            .where(Epic.project_id == project_id, Epic.deleted_at.is_(None))
            .order_by(Epic.created_at.desc())
        )
        return list(result.scalars().all())

    async def update_epic(self, epic_id: str, changes: Dict[str, Any], user: CurrentUser) -> Epic:
        async with atomic(self.db):
            epic = await self._epic_for_user(epic_id, user)
            if "color" in changes:
                self._check_color(changes["color"])
            _check_dates(changes.get("start_date", epic.start_date), changes.get("end_date", epic.end_date))
            if changes.get("status") is not None:
                epic.status = coerce_enum(EpicStatus, changes["status"], "status")
            if changes.get("name") is not None:
                epic.name = changes["name"]
            for field in ("description", "color", "start_date", "end_date", "goal", "success_criteria"):
                if field in changes:
                    setattr(epic, field, changes[field])
            epic.updated_at = utcnow()
        return epic

    async def delete_epic(self, epic_id: str, user: CurrentUser) -> None:
        async with atomic(self.db):
            epic = await self._epic_for_user(epic_id, user)
            epic.deleted_at = utcnow()
