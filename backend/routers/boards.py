# routers/boards.py — Boards, status-bound columns and live column statistics
from datetime import datetime
from typing import Optional, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from board_engine import BoardEngine
from database import get_db_session
from models import Board, BoardColumn, BoardType, TaskStatus

router = APIRouter(prefix="/api/v1/agile", tags=["Boards"])


# ============================================================
# SCHEMAS
# ============================================================

class BoardCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    board_type: str = "kanban"
    use_default_columns: bool = True


class BoardUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    board_type: Optional[str] = None


class ColumnCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    status: str
    position: Optional[int] = Field(None, ge=0)
    wip_limit: Optional[int] = Field(None, ge=1)
    color: Optional[str] = Field(None, min_length=7, max_length=7)


class ColumnUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    status: Optional[str] = None
    wip_limit: Optional[int] = Field(None, ge=1)
    color: Optional[str] = Field(None, min_length=7, max_length=7)


class ColumnReorder(BaseModel):
    column_ids: List[str] = Field(..., min_length=1)


class ColumnOut(BaseModel):
    id: str
    board_id: str
    name: str
    status: str
    position: int
    wip_limit: Optional[int] = None
    color: Optional[str] = None


class BoardOut(BaseModel):
    id: str
    project_id: str
    name: str
    description: Optional[str] = None
    board_type: str
    columns: List[ColumnOut] = []
    created_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ColumnStats(BaseModel):
    column_id: str
    name: str
    status: str
    task_count: int
    wip_limit: Optional[int] = None
    over_limit: bool


class BoardStatsOut(BaseModel):
    board_id: str
    columns: List[ColumnStats]
    total_tasks: int
    completed: int
    in_progress: int
    pending: int
    cancelled: int


# ============================================================
# HELPERS
# ============================================================

def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() if isinstance(dt, datetime) else str(dt)


def _column_to_out(c: BoardColumn) -> ColumnOut:
    return ColumnOut(
        id=c.id, board_id=c.board_id, name=c.name,
        status=TaskStatus(c.status).value, position=c.position,
        wip_limit=c.wip_limit, color=c.color,
    )


def _board_to_out(b: Board) -> BoardOut:
    return BoardOut(
        id=b.id,
        project_id=b.project_id,
        name=b.name,
        description=b.description,
        board_type=BoardType(b.board_type).value,
        columns=[_column_to_out(c) for c in sorted(b.columns, key=lambda x: x.position)],
        created_by=b.created_by,
        created_at=_ts(b.created_at),
        updated_at=_ts(b.updated_at),
    )


# ============================================================
# BOARD ENDPOINTS
# ============================================================

@router.post("/projects/{project_id}/boards", response_model=BoardOut, status_code=201)
async def create_board(
    project_id: str,
    data: BoardCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a board, by default with the standard five workflow columns"""
    return _board_to_out(await BoardEngine(db).create_board(project_id, data.model_dump(), user))


@router.get("/projects/{project_id}/boards", response_model=List[BoardOut])
async def list_boards(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return [_board_to_out(b) for b in await BoardEngine(db).list_boards(project_id, user)]


@router.get("/boards/{board_id}", response_model=BoardOut)
async def get_board(
    board_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return _board_to_out(await BoardEngine(db).get_board(board_id, user))


@router.patch("/boards/{board_id}", response_model=BoardOut)
async def update_board(
    board_id: str,
    data: BoardUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    board = await BoardEngine(db).update_board(board_id, data.model_dump(exclude_unset=True), user)
    return _board_to_out(board)


@router.delete("/boards/{board_id}", status_code=204)
async def delete_board(
    board_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await BoardEngine(db).delete_board(board_id, user)


@router.get("/boards/{board_id}/statistics", response_model=BoardStatsOut)
async def board_statistics(
    board_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Per-column task counts against WIP limits"""
    return await BoardEngine(db).board_statistics(board_id, user)


# ============================================================
# COLUMN ENDPOINTS
# ============================================================

@router.post("/boards/{board_id}/columns", response_model=ColumnOut, status_code=201)
async def create_column(
    board_id: str,
    data: ColumnCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return _column_to_out(await BoardEngine(db).create_column(board_id, data.model_dump(), user))


@router.post("/boards/{board_id}/columns/reorder", response_model=BoardOut)
async def reorder_columns(
    board_id: str,
    data: ColumnReorder,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return _board_to_out(await BoardEngine(db).reorder_columns(board_id, data.column_ids, user))


@router.patch("/columns/{column_id}", response_model=ColumnOut)
async def update_column(
    column_id: str,
    data: ColumnUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    column = await BoardEngine(db).update_column(column_id, data.model_dump(exclude_unset=True), user)
    return _column_to_out(column)


@router.delete("/columns/{column_id}", status_code=204)
async def delete_column(
    column_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await BoardEngine(db).delete_column(column_id, user)
