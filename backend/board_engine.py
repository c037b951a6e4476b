# board_engine.py — Boards, columns and per-column statistics
# Columns bind to task statuses by value; a board is a view over the project's tasks.

import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from auth import CurrentUser
from database import atomic
from errors import Conflict, NotFound, ValidationFailed
from models import AgileTask, Board, BoardColumn, BoardType, TaskStatus, new_uuid, utcnow
from project_store import ProjectStore
from task_engine import coerce_enum

logger = logging.getLogger("agileflow.boards")

DEFAULT_COLUMNS = [
    {"name": "To Do", "status": TaskStatus.TODO, "color": "#3b82f6"},
    {"name": "In Progress", "status": TaskStatus.IN_PROGRESS, "color": "#f59e0b", "wip_limit": 5},
    {"name": "In Review", "status": TaskStatus.IN_REVIEW, "color": "#8b5cf6", "wip_limit": 3},
    {"name": "Testing", "status": TaskStatus.TESTING, "color": "#06b6d4", "wip_limit": 3},
    {"name": "Done", "status": TaskStatus.DONE, "color": "#22c55e"},
]

IN_FLIGHT = (TaskStatus.IN_PROGRESS, TaskStatus.IN_REVIEW, TaskStatus.TESTING)


def _check_wip_limit(value: Optional[int]) -> None:
    if value is not None and value < 1:
        raise ValidationFailed("wip_limit must be >= 1")


class BoardEngine:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.projects = ProjectStore(db)

    async def load_board(self, board_id: str) -> Board:
        stmt = (
            select(Board)
            .where(Board.id == board_id, Board.deleted_at.is_(None))
            .options(selectinload(Board.columns))
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        board = result.scalar_one_or_none()
        if not board:
            raise NotFound("board", board_id)
        return board

    async def _board_for_user(self, board_id: str, user: CurrentUser) -> Board:
        board = await self.load_board(board_id)
        await self.projects.require_access(board.project_id, user)
        return board

    async def _columns(self, board_id: str) -> List[BoardColumn]:
        result = await self.db.execute(
            select(BoardColumn)
            .where(BoardColumn.board_id == board_id)
            .order_by(BoardColumn.position.asc())
        )
        return list(result.scalars().all())

    async def _column_for_user(self, column_id: str, user: CurrentUser) -> BoardColumn:
        result = await self.db.execute(
            select(BoardColumn, Board)
            .join(Board, Board.id == BoardColumn.board_id)
            .where(BoardColumn.id == column_id, Board.deleted_at.is_(None))
        )
        row = result.first()
        if row is None:
            raise NotFound("column", column_id)
        await self.projects.require_access(row[1].project_id, user)
        return row[0]

    # ── Boards ───────────────────────────────────────────────

    async def create_board(self, project_id: str, data: Dict[str, Any], user: CurrentUser) -> Board:
        async with atomic(self.db):
            await self.projects.require_access(project_id, user)
            board = Board(
                id=new_uuid(),
                project_id=project_id,
                name=data["name"],
                description=data.get("description"),
                board_type=coerce_enum(BoardType, data.get("board_type") or BoardType.KANBAN, "board_type"),
                created_by=user.id,
            )
            self.db.add(board)
            if data.get("use_default_columns", True):
                for position, col in enumerate(DEFAULT_COLUMNS):
                    self.db.add(BoardColumn(
                        id=new_uuid(),
                        board_id=board.id,
                        name=col["name"],
                        status=col["status"],
                        position=position,
                        color=col.get("color"),
                        wip_limit=col.get("wip_limit"),
                    ))
            await self.db.flush()
            logger.info(f"Board '{board.name}' created for project {project_id}")
        return await self.load_board(board.id)

    async def get_board(self, board_id: str, user: CurrentUser) -> Board:
        return await self._board_for_user(board_id, user)

    async def list_boards(self, project_id: str, user: CurrentUser) -> List[Board]:
        await self.projects.require_access(project_id, user)
        result = await self.db.execute(
            select(Board)
            .where(Board.project_id == project_id, Board.deleted_at.is_(None))
            .options(selectinload(Board.columns))
            .order_by(Board.created_at.asc())
        )
        return list(result.scalars().all())

    async def update_board(self, board_id: str, changes: Dict[str, Any], user: CurrentUser) -> Board:
        async with atomic(self.db):
            board = await self._board_for_user(board_id, user)
            if changes.get("name") is not None:
                board.name = changes["name"]
            if "description" in changes:
                board.description = changes["description"]
            if changes.get("board_type") is not None:
                board.board_type = coerce_enum(BoardType, changes["board_type"], "board_type")
            board.updated_at = utcnow()
        return await self.load_board(board_id)

    async def delete_board(self, board_id: str, user: CurrentUser) -> None:
        async with atomic(self.db):
            board = await self._board_for_user(board_id, user)
            board.deleted_at = utcnow()
            logger.info(f"Board {board_id} soft-deleted")

    # ── Columns ──────────────────────────────────────────────

    async def create_column(self, board_id: str, data: Dict[str, Any], user: CurrentUser) -> BoardColumn:
        async with atomic(self.db):
            await self._board_for_user(board_id, user)
            status = coerce_enum(TaskStatus, data["status"], "status")
            _check_wip_limit(data.get("wip_limit"))

            columns = await self._columns(board_id)
            if any(c.status == status for c in columns):
                raise Conflict(f"board already has a column for status {status.value}")

            position = data.get("position")
            if position is None or position >= len(columns):
                position = len(columns)
            else:
                position = max(0, position)
                for c in columns[position:]:
                    c.position += 1

            column = BoardColumn(
                id=new_uuid(),
                board_id=board_id,
                name=data["name"],
                status=status,
                position=position,
                wip_limit=data.get("wip_limit"),
                color=data.get("color"),
            )
            self.db.add(column)
            await self.db.flush()
        return column

    async def update_column(self, column_id: str, changes: Dict[str, Any], user: CurrentUser) -> BoardColumn:
        async with atomic(self.db):
            column = await self._column_for_user(column_id, user)
            if changes.get("status") is not None:
                status = coerce_enum(TaskStatus, changes["status"], "status")
                if status != column.status:
                    clash = await self.db.execute(
                        select(BoardColumn.id).where(
                            BoardColumn.board_id == column.board_id,
                            BoardColumn.status == status,
                        )
                    )
                    if clash.first() is not None:
                        raise Conflict(f"board already has a column for status {status.value}")
                    column.status = status
            if "wip_limit" in changes:
                _check_wip_limit(changes["wip_limit"])
                column.wip_limit = changes["wip_limit"]
            if changes.get("name") is not None:
                column.name = changes["name"]
            if "color" in changes:
                column.color = changes["color"]
            column.updated_at = utcnow()
            await self.db.flush()
        return column

    async def delete_column(self, column_id: str, user: CurrentUser) -> None:
        async with atomic(self.db):
            column = await self._column_for_user(column_id, user)
            board_id = column.board_id
            await self.db.delete(column)
            await self.db.flush()
            for position, c in enumerate(await self._columns(board_id)):
                c.position = position

    async def reorder_columns(self, board_id: str, column_ids: Sequence[str], user: CurrentUser) -> Board:
        async with atomic(self.db):
            await self._board_for_user(board_id, user)
            columns = {c.id: c for c in await self._columns(board_id)}
            if len(column_ids) != len(columns) or set(column_ids) != set(columns):
                raise ValidationFailed("column_ids must list every column of the board exactly once")
            for position, cid in enumerate(column_ids):
                columns[cid].position = position
        return await self.load_board(board_id)

    # ── Statistics ───────────────────────────────────────────

    async def board_statistics(self, board_id: str, user: CurrentUser) -> Dict[str, Any]:
        """Per-column counts and project totals, read from the task table now."""
        board = await self._board_for_user(board_id, user)
        result = await self.db.execute(
            select(AgileTask.status, func.count(AgileTask.id))
            .where(AgileTask.project_id == board.project_id, AgileTask.deleted_at.is_(None))
            .group_by(AgileTask.status)
        )
        counts = {TaskStatus(status): n for status, n in result.all()}

        columns = []
        for c in sorted(board.columns, key=lambda x: x.position):
            n = counts.get(TaskStatus(c.status), 0)
            columns.append({
                "column_id": c.id,
                "name": c.name,
                "status": TaskStatus(c.status).value,
                "task_count": n,
                "wip_limit": c.wip_limit,
                "over_limit": c.wip_limit is not None and n > c.wip_limit,
            })

        return {
            "board_id": board.id,
            "columns": columns,
            "total_tasks": sum(counts.values()),
            "completed": counts.get(TaskStatus.DONE, 0),
            "in_progress": sum(counts.get(s, 0) for s in IN_FLIGHT),
            "pending": counts.get(TaskStatus.TODO, 0),
            "cancelled": counts.get(TaskStatus.CANCELLED, 0),
        }
