# task_engine.py — Task lifecycle, ordering and WIP enforcement
# Every public write method is a single database transaction (database.atomic).
#
# Ordering scope: tasks are siblings when they share (project, sprint-or-null, status).
# Within a scope the display order is (rank, created_at, id).

import logging
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from auth import CurrentUser
from database import atomic
from errors import (
    IllegalTransition, NotFound, OrderCorruption, RankExhausted,
    ValidationFailed, WIPLimitExceeded,
)
from lexorank import RankAllocator, allocator
from models import (
    AgileTask, Board, BoardColumn, Epic, Project, Sprint,
    TaskPriority, TaskStatus, TaskType, can_transition, new_uuid, utcnow,
)
from project_store import ProjectStore

logger = logging.getLogger("agileflow.tasks")

Scope = Tuple[Optional[str], TaskStatus]

UPDATABLE_FIELDS = {
    "title", "description", "task_type", "priority", "story_points",
    "original_estimate", "remaining_time", "assignee_id", "labels",
    "components", "acceptance_criteria", "sprint_id", "epic_id",
    "parent_id", "status",
}


def coerce_enum(enum_cls, value, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationFailed(f"{field} must be one of: {allowed}")


def _criteria(items: Optional[Iterable[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    out = []
    for item in items or []:
        out.append({
            "id": item.get("id") or new_uuid(),
            "description": item["description"],
            "completed": bool(item.get("completed", False)),
        })
    return out


def _sibling_order():
    return (AgileTask.rank.asc(), AgileTask.created_at.asc(), AgileTask.id.asc())


class TaskBoardEngine:
    """Tasks and their ordering inside one project."""

    def __init__(self, db: AsyncSession, ranks: RankAllocator = allocator):
        self.db = db
        self.ranks = ranks
        self.projects = ProjectStore(db)

    # ============================================================
    # LOOKUPS
    # ============================================================

    async def load_task(self, task_id: str) -> AgileTask:
        stmt = (
            select(AgileTask)
            .where(AgileTask.id == task_id, AgileTask.deleted_at.is_(None))
            .options(selectinload(AgileTask.sprint), selectinload(AgileTask.epic))
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        task = result.scalar_one_or_none()
        if not task:
            raise NotFound("task", task_id)
        return task

    async def get_task_for_user(self, task_id: str, user: CurrentUser) -> AgileTask:
        """Fetch a live task the caller may see. Tasks of deleted projects are not found."""
        result = await self.db.execute(
            select(AgileTask).where(AgileTask.id == task_id, AgileTask.deleted_at.is_(None))
        )
        task = result.scalar_one_or_none()
        if not task:
            raise NotFound("task", task_id)
        await self.projects.require_access(task.project_id, user)
        return task

    async def _task_in_project(self, task_id: str, project_id: str, role: str) -> AgileTask:
        result = await self.db.execute(
            select(AgileTask).where(
                AgileTask.id == task_id,
                AgileTask.project_id == project_id,
                AgileTask.deleted_at.is_(None),
            )
        )
        task = result.scalar_one_or_none()
        if not task:
            raise NotFound(role, task_id)
        return task

    async def _check_sprint(self, sprint_id: Optional[str], project_id: str) -> None:
        if not sprint_id:
            return
        result = await self.db.execute(
            select(Sprint.id).where(
                Sprint.id == sprint_id, Sprint.project_id == project_id, Sprint.deleted_at.is_(None),
            )
        )
        if result.scalar_one_or_none() is None:
            raise NotFound("sprint", sprint_id)

    async def _check_epic(self, epic_id: Optional[str], project_id: str) -> None:
        if not epic_id:
            return
        result = await self.db.execute(
            select(Epic.id).where(
                Epic.id == epic_id, Epic.project_id == project_id, Epic.deleted_at.is_(None),
            )
        )
        if result.scalar_one_or_none() is None:
            raise NotFound("epic", epic_id)

    async def _column_in_project(self, column_id: str, project_id: Optional[str] = None) -> Tuple[BoardColumn, Board]:
        stmt = (
            select(BoardColumn, Board)
            .join(Board, Board.id == BoardColumn.board_id)
            .where(BoardColumn.id == column_id, Board.deleted_at.is_(None))
        )
        result = await self.db.execute(stmt)
        row = result.first()
        if row is None or (project_id is not None and row[1].project_id != project_id):
            raise NotFound("column", column_id)
        return row[0], row[1]

    # ============================================================
    # SCOPES & RANKS
    # ============================================================

    async def scope_tasks(
        self,
        project_id: str,
        sprint_id: Optional[str],
        status: TaskStatus,
        exclude: Sequence[str] = (),
    ) -> List[AgileTask]:
        stmt = select(AgileTask).where(
            AgileTask.project_id == project_id,
            AgileTask.status == status,
            AgileTask.deleted_at.is_(None),
        )
        if sprint_id is None:
            stmt = stmt.where(AgileTask.sprint_id.is_(None))
        else:
            stmt = stmt.where(AgileTask.sprint_id == sprint_id)
        if exclude:
            stmt = stmt.where(AgileTask.id.notin_(list(exclude)))
        result = await self.db.execute(stmt.order_by(*_sibling_order()))
        return list(result.scalars().all())

    async def _last_rank(self, project_id: str, sprint_id: Optional[str], status: TaskStatus,
                         exclude: Sequence[str] = ()) -> Optional[str]:
        siblings = await self.scope_tasks(project_id, sprint_id, status, exclude)
        return siblings[-1].rank if siblings else None

    def _respread(self, tasks: Sequence[AgileTask]) -> None:
        for task, rank in zip(tasks, self.ranks.spread(len(tasks))):
            task.rank = rank

    async def _append_rank(self, project_id: str, sprint_id: Optional[str], status: TaskStatus,
                           exclude: Sequence[str] = ()) -> str:
        siblings = await self.scope_tasks(project_id, sprint_id, status, exclude)
        ranks = [t.rank for t in siblings]
        if not self.ranks.is_valid_sequence(ranks):
            logger.warning(f"Scope ({project_id}, {sprint_id}, {status.value}) out of order, rebalancing")
            self._respread(siblings)
        return self.ranks.between(siblings[-1].rank if siblings else None, None)

    async def _insert_rank(self, siblings: List[AgileTask], index: int) -> str:
        ranks = [t.rank for t in siblings]
        if not self.ranks.is_valid_sequence(ranks):
            self._respread(siblings)
            ranks = [t.rank for t in siblings]
        try:
            return self.ranks.insert_at(index, ranks)
        except RankExhausted:
            self._respread(siblings)
            return self.ranks.insert_at(index, [t.rank for t in siblings])

    async def _next_task_number(self, project_id: str) -> int:
        # Row-level increment serializes concurrent creates on the project row
        await self.db.execute(
            update(Project)
            .where(Project.id == project_id)
            .values(task_sequence=Project.task_sequence + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(select(Project.task_sequence).where(Project.id == project_id))
        return int(result.scalar_one())

    # ============================================================
    # STATUS & WIP
    # ============================================================

    @staticmethod
    def ensure_transition(task: AgileTask, target: TaskStatus) -> None:
        if task.status != target and not can_transition(task.status, target):
            raise IllegalTransition("task", TaskStatus(task.status).value, TaskStatus(target).value)

    async def wip_limit_for(self, project_id: str, status: TaskStatus) -> Optional[int]:
        stmt = (
            select(func.min(BoardColumn.wip_limit))
            .join(Board, Board.id == BoardColumn.board_id)
            .where(
                Board.project_id == project_id,
                Board.deleted_at.is_(None),
                BoardColumn.status == status,
                BoardColumn.wip_limit.isnot(None),
            )
        )
        result = await self.db.execute(stmt)
        return result.scalar()

    async def check_wip(
        self,
        project_id: str,
        status: TaskStatus,
        moving_ids: Sequence[str],
        column: Optional[BoardColumn] = None,
        incoming: int = 1,
    ) -> None:
        limit = column.wip_limit if column is not None else await self.wip_limit_for(project_id, status)
        if limit is None:
            return
        stmt = select(func.count(AgileTask.id)).where(
            AgileTask.project_id == project_id,
            AgileTask.status == status,
            AgileTask.deleted_at.is_(None),
        )
        if moving_ids:
            stmt = stmt.where(AgileTask.id.notin_(list(moving_ids)))
        current = (await self.db.execute(stmt)).scalar() or 0
        if current + incoming > limit:
            raise WIPLimitExceeded(TaskStatus(status).value, limit, current)

    # ============================================================
    # LIFECYCLE
    # ============================================================

    async def create_task(self, project_id: str, data: Dict[str, Any], user: CurrentUser) -> AgileTask:
        async with atomic(self.db):
            await self.projects.require_access(project_id, user)
            task_type = coerce_enum(TaskType, data.get("task_type") or TaskType.STORY, "type")
            priority = coerce_enum(TaskPriority, data.get("priority") or TaskPriority.MEDIUM, "priority")

            sprint_id = data.get("sprint_id")
            await self._check_sprint(sprint_id, project_id)
            await self._check_epic(data.get("epic_id"), project_id)
            if data.get("parent_id"):
                await self._task_in_project(data["parent_id"], project_id, "parent task")

            rank = await self._append_rank(project_id, sprint_id, TaskStatus.TODO)
            number = await self._next_task_number(project_id)

            task = AgileTask(
                id=new_uuid(),
                project_id=project_id,
                sprint_id=sprint_id,
                epic_id=data.get("epic_id"),
                parent_id=data.get("parent_id"),
                task_number=number,
                title=data["title"],
                description=data.get("description"),
                task_type=task_type,
                status=TaskStatus.TODO,
                priority=priority,
                story_points=data.get("story_points"),
                original_estimate=data.get("original_estimate"),
                remaining_time=data.get("remaining_time"),
                logged_time=0.0,
                assignee_id=data.get("assignee_id"),
                reporter_id=user.id,
                labels=list(data.get("labels") or []),
                components=list(data.get("components") or []),
                acceptance_criteria=_criteria(data.get("acceptance_criteria")),
                rank=rank,
            )
            self.db.add(task)
            await self.db.flush()
            logger.info(f"Task #{number} created in project {project_id} (rank={rank})")
        return await self.load_task(task.id)

    async def get_task(self, task_id: str, user: CurrentUser) -> AgileTask:
        task = await self.get_task_for_user(task_id, user)
        return await self.load_task(task.id)

    async def list_tasks(
        self,
        project_id: str,
        user: CurrentUser,
        *,
        sprint_id: Optional[str] = None,
        backlog: bool = False,
        epic_id: Optional[str] = None,
        status: Optional[str] = None,
        assignee_id: Optional[str] = None,
        task_type: Optional[str] = None,
        priority: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 200,
        offset: int = 0,
    ) -> List[AgileTask]:
        await self.projects.require_access(project_id, user)
        stmt = (
            select(AgileTask)
            .where(AgileTask.project_id == project_id, AgileTask.deleted_at.is_(None))
            .options(selectinload(AgileTask.sprint), selectinload(AgileTask.epic))
        )
        if backlog:
            stmt = stmt.where(AgileTask.sprint_id.is_(None))
        elif sprint_id:
            # A deleted sprint has no visible children
            stmt = stmt.join(Sprint, Sprint.id == AgileTask.sprint_id).where(
                AgileTask.sprint_id == sprint_id, Sprint.deleted_at.is_(None),
            )
        if epic_id:
            stmt = stmt.join(Epic, Epic.id == AgileTask.epic_id).where(
                AgileTask.epic_id == epic_id, Epic.deleted_at.is_(None),
            )
        if status:
            stmt = stmt.where(AgileTask.status == coerce_enum(TaskStatus, status, "status"))
        if assignee_id:
            stmt = stmt.where(AgileTask.assignee_id == assignee_id)
        if task_type:
            stmt = stmt.where(AgileTask.task_type == coerce_enum(TaskType, task_type, "type"))
        if priority:
            stmt = stmt.where(AgileTask.priority == coerce_enum(TaskPriority, priority, "priority"))
        if search:
            stmt = stmt.where(AgileTask.title.ilike(f"%{search}%"))
        stmt = stmt.order_by(*_sibling_order()).offset(offset).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def update_task(self, task_id: str, changes: Dict[str, Any], user: CurrentUser) -> AgileTask:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationFailed(f"fields cannot be updated: {', '.join(sorted(unknown))}")

        async with atomic(self.db):
            task = await self.get_task_for_user(task_id, user)
            old_status = TaskStatus(task.status)

            if "status" in changes and changes["status"] is not None:
                target = coerce_enum(TaskStatus, changes["status"], "status")
                if target != task.status:
                    self.ensure_transition(task, target)
                    await self.check_wip(task.project_id, target, [task.id])
                    task.status = target
            if "task_type" in changes and changes["task_type"] is not None:
                task.task_type = coerce_enum(TaskType, changes["task_type"], "type")
            if "priority" in changes and changes["priority"] is not None:
                task.priority = coerce_enum(TaskPriority, changes["priority"], "priority")
            if "sprint_id" in changes:
                await self._check_sprint(changes["sprint_id"], task.project_id)
                task.sprint_id = changes["sprint_id"]
            if "epic_id" in changes:
                await self._check_epic(changes["epic_id"], task.project_id)
                task.epic_id = changes["epic_id"]
            if "parent_id" in changes:
                parent_id = changes["parent_id"]
                if parent_id == task.id:
                    raise ValidationFailed("a task cannot be its own parent")
                if parent_id:
                    await self._task_in_project(parent_id, task.project_id, "parent task")
                task.parent_id = parent_id
            if "acceptance_criteria" in changes:
                task.acceptance_criteria = _criteria(changes["acceptance_criteria"])
            if "title" in changes and not changes["title"]:
                raise ValidationFailed("title must not be empty")

            for field in ("title", "description", "story_points", "original_estimate",
                          "remaining_time", "assignee_id"):
                if field in changes:
                    setattr(task, field, changes[field])
            for field in ("labels", "components"):
                if field in changes:
                    setattr(task, field, list(changes[field] or []))

            # A status change is a cross-scope move; sprint or epic reassignment keeps the rank
            if TaskStatus(task.status) != old_status:
                task.rank = await self._append_rank(
                    task.project_id, task.sprint_id, TaskStatus(task.status), exclude=[task.id],
                )

            task.updated_at = utcnow()
            await self.db.flush()
        return await self.load_task(task_id)

    async def delete_task(self, task_id: str, user: CurrentUser) -> None:
        async with atomic(self.db):
            task = await self.get_task_for_user(task_id, user)
            task.deleted_at = utcnow()
            logger.info(f"Task {task_id} soft-deleted")

    # ============================================================
    # MOVE / REORDER
    # ============================================================

    async def move_task(
        self,
        task_id: str,
        user: CurrentUser,
        *,
        prev_task_id: Optional[str] = None,
        next_task_id: Optional[str] = None,
        target_status: Optional[str] = None,
        target_sprint_id: Optional[str] = None,
        to_backlog: bool = False,
    ) -> AgileTask:
        """Place a task between two neighbours, optionally changing status and sprint.

        `to_backlog` clears the sprint; it cannot be combined with `target_sprint_id`.
        """
        if task_id in (prev_task_id, next_task_id):
            raise ValidationFailed("a task cannot be its own neighbour")
        if to_backlog and target_sprint_id:
            raise ValidationFailed("to_backlog and target_sprint_id are mutually exclusive")

        async with atomic(self.db):
            task = await self.get_task_for_user(task_id, user)
            status = coerce_enum(TaskStatus, target_status, "status") if target_status else TaskStatus(task.status)
            if status != task.status:
                self.ensure_transition(task, status)
                await self.check_wip(task.project_id, status, [task.id])

            sprint_id = None if to_backlog else task.sprint_id
            if target_sprint_id:
                await self._check_sprint(target_sprint_id, task.project_id)
                sprint_id = target_sprint_id

            prev = await self._task_in_project(prev_task_id, task.project_id, "previous task") if prev_task_id else None
            nxt = await self._task_in_project(next_task_id, task.project_id, "next task") if next_task_id else None

            if prev is None and nxt is None:
                rank = await self._append_rank(task.project_id, sprint_id, status, exclude=[task.id])
            else:
                rank = await self._rank_between_neighbours(task, prev, nxt)

            task.status = status
            task.sprint_id = sprint_id
            task.rank = rank
            task.updated_at = utcnow()
            await self.db.flush()
            logger.info(f"Task {task_id} moved to ({sprint_id}, {status.value}) rank={rank}")
        return await self.load_task(task_id)

    async def _rank_between_neighbours(self, task: AgileTask, prev: Optional[AgileTask],
                                       nxt: Optional[AgileTask]) -> str:
        try:
            return self.ranks.between(prev.rank if prev else None, nxt.rank if nxt else None)
        except RankExhausted:
            # Collided neighbours: re-spread their scopes once and try again
            scopes = {(n.sprint_id, TaskStatus(n.status)) for n in (prev, nxt) if n is not None}
            for sprint_id, status in scopes:
                siblings = await self.scope_tasks(task.project_id, sprint_id, status, exclude=[task.id])
                logger.warning(f"Rank gap exhausted near task {task.id}, rebalancing {len(siblings)} siblings")
                self._respread(siblings)
            return self.ranks.between(prev.rank if prev else None, nxt.rank if nxt else None)

    async def reorder_task(
        self,
        task_id: str,
        user: CurrentUser,
        *,
        target_index: int,
        column_id: Optional[str] = None,
        sprint_id: Optional[str] = None,
    ) -> AgileTask:
        """Index-based move inside (or into) a scope.

        `target_index` is a slot in the current sibling list, so dragging a card
        downwards lands it before the card that currently occupies that slot.
        """
        if target_index < 0:
            raise ValidationFailed("target index must be >= 0")

        async with atomic(self.db):
            task = await self.get_task_for_user(task_id, user)

            column = None
            status = TaskStatus(task.status)
            if column_id:
                column, _ = await self._column_in_project(column_id, task.project_id)
                status = TaskStatus(column.status)

            scope_sprint = task.sprint_id
            if sprint_id:
                await self._check_sprint(sprint_id, task.project_id)
                scope_sprint = sprint_id

            if status != task.status:
                self.ensure_transition(task, status)
                await self.check_wip(task.project_id, status, [task.id], column=column)

            siblings = await self.scope_tasks(task.project_id, scope_sprint, status)
            current_index = next((i for i, t in enumerate(siblings) if t.id == task.id), None)
            others = [t for t in siblings if t.id != task.id]

            index = target_index
            if current_index is not None and index > current_index:
                index -= 1

            rank = await self._insert_rank(others, index)
            task.status = status
            task.sprint_id = scope_sprint
            task.rank = rank
            task.updated_at = utcnow()
            await self.db.flush()
        return await self.load_task(task_id)

    async def batch_reorder(
        self,
        project_id: str,
        task_ids: Sequence[str],
        user: CurrentUser,
        *,
        sprint_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[AgileTask]:
        """Rewrite ranks so the listed tasks appear exactly in the given order."""
        if not task_ids:
            raise ValidationFailed("task_ids must not be empty")
        if len(set(task_ids)) != len(task_ids):
            raise ValidationFailed("task_ids contains duplicates")

        async with atomic(self.db):
            await self.projects.require_access(project_id, user)
            scope_status = coerce_enum(TaskStatus, status, "status") if status else None
            if sprint_id:
                await self._check_sprint(sprint_id, project_id)

            result = await self.db.execute(
                select(AgileTask).where(
                    AgileTask.id.in_(list(task_ids)),
                    AgileTask.project_id == project_id,
                    AgileTask.deleted_at.is_(None),
                )
            )
            by_id = {t.id: t for t in result.scalars().all()}
            missing = [tid for tid in task_ids if tid not in by_id]
            if missing:
                raise NotFound("task", missing[0])

            ordered = [by_id[tid] for tid in task_ids]
            for t in ordered:
                if sprint_id and t.sprint_id != sprint_id:
                    raise ValidationFailed(f"task {t.id} is not in sprint {sprint_id}")
                if scope_status and t.status != scope_status:
                    raise ValidationFailed(f"task {t.id} is not in status {scope_status.value}")

            if sprint_id and scope_status:
                rest = await self.scope_tasks(project_id, sprint_id, scope_status, exclude=list(task_ids))
                ordered.extend(rest)

            self._respread(ordered)
            await self.db.flush()
            logger.info(f"Batch reorder of {len(task_ids)} tasks in project {project_id}")
        return ordered

    async def batch_move(
        self,
        task_ids: Sequence[str],
        column_id: str,
        user: CurrentUser,
        *,
        position: Optional[int] = None,
    ) -> List[AgileTask]:
        """Move several tasks into a column. WIP is evaluated once for the whole batch."""
        if not task_ids:
            raise ValidationFailed("task_ids must not be empty")
        if len(set(task_ids)) != len(task_ids):
            raise ValidationFailed("task_ids contains duplicates")

        async with atomic(self.db):
            column, board = await self._column_in_project(column_id)
            project_id = board.project_id
            await self.projects.require_access(project_id, user)
            target = TaskStatus(column.status)

            result = await self.db.execute(
                select(AgileTask).where(
                    AgileTask.id.in_(list(task_ids)),
                    AgileTask.project_id == project_id,
                    AgileTask.deleted_at.is_(None),
                )
            )
            by_id = {t.id: t for t in result.scalars().all()}
            missing = [tid for tid in task_ids if tid not in by_id]
            if missing:
                raise NotFound("task", missing[0])
            tasks = [by_id[tid] for tid in task_ids]

            for t in tasks:
                self.ensure_transition(t, target)
            if any(t.status != target for t in tasks):
                await self.check_wip(project_id, target, list(task_ids), column=column, incoming=len(tasks))

            lanes: Dict[Optional[str], List[AgileTask]] = {}
            cursors: Dict[Optional[str], int] = {}
            for t in tasks:
                if t.sprint_id not in lanes:
                    lanes[t.sprint_id] = await self.scope_tasks(project_id, t.sprint_id, target, exclude=list(task_ids))
                    size = len(lanes[t.sprint_id])
                    cursors[t.sprint_id] = size if position is None else max(0, min(position, size))
                lane = lanes[t.sprint_id]
                idx = cursors[t.sprint_id]
                t.rank = await self._insert_rank(lane, idx)
                t.status = target
                t.updated_at = utcnow()
                lane.insert(idx, t)
                cursors[t.sprint_id] = idx + 1

            await self.db.flush()
            logger.info(f"Batch moved {len(tasks)} tasks to column {column_id} ({target.value})")
        return tasks

    # ============================================================
    # WHOLE-PROJECT ORDER MAINTENANCE
    # ============================================================

    async def _scopes(self, project_id: str) -> "OrderedDict[Scope, List[AgileTask]]":
        result = await self.db.execute(
            select(AgileTask)
            .where(AgileTask.project_id == project_id, AgileTask.deleted_at.is_(None))
            .order_by(*_sibling_order())
        )
        scopes: "OrderedDict[Scope, List[AgileTask]]" = OrderedDict()
        for task in result.scalars().all():
            scopes.setdefault((task.sprint_id, TaskStatus(task.status)), []).append(task)
        return scopes

    async def rebalance_project(self, project_id: str, user: CurrentUser) -> Dict[str, int]:
        async with atomic(self.db):
            await self.projects.require_access(project_id, user)
            scopes = await self._scopes(project_id)
            total = 0
            for tasks in scopes.values():
                self._respread(tasks)
                total += len(tasks)
            await self.db.flush()
            logger.info(f"Rebalanced {total} tasks across {len(scopes)} scopes in project {project_id}")
        return {"scopes": len(scopes), "tasks": total}

    async def validate_task_order(self, project_id: str, user: CurrentUser) -> Dict[str, int]:
        """Read-only check. Raises OrderCorruption; repair with rebalance_project."""
        await self.projects.require_access(project_id, user)
        scopes = await self._scopes(project_id)
        broken = []
        for (sprint_id, status), tasks in scopes.items():
            if not self.ranks.is_valid_sequence([t.rank for t in tasks]):
                broken.append({"sprint_id": sprint_id, "status": status.value, "tasks": len(tasks)})
        if broken:
            raise OrderCorruption(
                f"{len(broken)} ordering scope(s) contain duplicate or malformed ranks",
                project_id=project_id, scopes=broken,
            )
        return {"scopes": len(scopes), "tasks": sum(len(t) for t in scopes.values())}
