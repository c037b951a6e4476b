# routers/tasks.py — Agile tasks: lifecycle, drag-and-drop ordering, comments, work logs
from datetime import date, datetime
from typing import Optional, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from models import AgileTask, TaskComment, WorkLog, TaskPriority, TaskStatus, TaskType
from task_engine import TaskBoardEngine
from task_notes import TaskNotes

router = APIRouter(prefix="/api/v1/agile", tags=["Agile Tasks"])


# ============================================================
# SCHEMAS
# ============================================================

# --- Task ---
class CriterionIn(BaseModel):
    id: Optional[str] = None
    description: str = Field(..., min_length=1, max_length=1000)
    completed: bool = False


class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    task_type: str = "story"
    priority: str = "medium"
    sprint_id: Optional[str] = None
    epic_id: Optional[str] = None
    parent_id: Optional[str] = None
    assignee_id: Optional[str] = None
    story_points: Optional[int] = Field(None, ge=1, le=100)
    original_estimate: Optional[float] = Field(None, ge=0)
    remaining_time: Optional[float] = Field(None, ge=0)
    labels: List[str] = Field(default_factory=list)
    components: List[str] = Field(default_factory=list)
    acceptance_criteria: List[CriterionIn] = Field(default_factory=list)


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    task_type: Optional[str] = None
    priority: Optional[str] = None
    status: Optional[str] = None
    sprint_id: Optional[str] = None
    epic_id: Optional[str] = None
    parent_id: Optional[str] = None
    assignee_id: Optional[str] = None
    story_points: Optional[int] = Field(None, ge=1, le=100)
    original_estimate: Optional[float] = Field(None, ge=0)
    remaining_time: Optional[float] = Field(None, ge=0)
    labels: Optional[List[str]] = None
    components: Optional[List[str]] = None
    acceptance_criteria: Optional[List[CriterionIn]] = None


class TaskMove(BaseModel):
    prev_task_id: Optional[str] = None
    next_task_id: Optional[str] = None
    target_status: Optional[str] = None
    target_sprint_id: Optional[str] = None
    to_backlog: bool = False


class TaskReorder(BaseModel):
    target_index: int = Field(..., ge=0)
    column_id: Optional[str] = None
    sprint_id: Optional[str] = None


class BatchReorder(BaseModel):
    task_ids: List[str] = Field(..., min_length=1)
    sprint_id: Optional[str] = None
    status: Optional[str] = None


class BatchMove(BaseModel):
    task_ids: List[str] = Field(..., min_length=1)
    column_id: str
    position: Optional[int] = Field(None, ge=0)


class SprintRef(BaseModel):
    id: str
    name: str
    status: str


class EpicRef(BaseModel):
    id: str
    name: str
    color: Optional[str] = None


class TaskOut(BaseModel):
    id: str
    project_id: str
    task_number: int
    title: str
    description: Optional[str] = None
    task_type: str
    status: str
    priority: str
    sprint_id: Optional[str] = None
    epic_id: Optional[str] = None
    parent_id: Optional[str] = None
    sprint: Optional[SprintRef] = None
    epic: Optional[EpicRef] = None
    story_points: Optional[int] = None
    original_estimate: Optional[float] = None
    remaining_time: Optional[float] = None
    logged_time: float = 0.0
    assignee_id: Optional[str] = None
    reporter_id: str
    labels: list = []
    components: list = []
    acceptance_criteria: list = []
    rank: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class TaskOrderOut(BaseModel):
    id: str
    status: str
    sprint_id: Optional[str] = None
    rank: str


# --- Comments / work logs ---
class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=10000)
    is_internal: bool = False


class CommentUpdate(BaseModel):
    content: str = Field(..., min_length=1, max_length=10000)


class CommentOut(BaseModel):
    id: str
    task_id: str
    author_id: str
    content: str
    is_internal: bool
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class WorkLogCreate(BaseModel):
    time_spent: float = Field(..., ge=0.1, le=24)
    work_date: Optional[date] = None
    description: Optional[str] = None


class WorkLogOut(BaseModel):
    id: str
    task_id: str
    user_id: str
    time_spent: float
    description: Optional[str] = None
    work_date: str
    created_at: Optional[str] = None


# ============================================================
# HELPERS
# ============================================================

def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() if isinstance(dt, (datetime, date)) else str(dt)


def _loaded(task: AgileTask, name: str):
    # sprint/epic are lazy="raise"; only read them when eagerly loaded
    return task.__dict__.get(name)


def _task_to_out(t: AgileTask) -> TaskOut:
    sprint = _loaded(t, "sprint")
    epic = _loaded(t, "epic")
    return TaskOut(
        id=t.id,
        project_id=t.project_id,
        task_number=t.task_number,
        title=t.title,
        description=t.description,
        task_type=TaskType(t.task_type).value,
        status=TaskStatus(t.status).value,
        priority=TaskPriority(t.priority).value,
        sprint_id=t.sprint_id,
        epic_id=t.epic_id,
        parent_id=t.parent_id,
        sprint=SprintRef(id=sprint.id, name=sprint.name, status=sprint.status.value) if sprint else None,
        epic=EpicRef(id=epic.id, name=epic.name, color=epic.color) if epic else None,
        story_points=t.story_points,
        original_estimate=t.original_estimate,
        remaining_time=t.remaining_time,
        logged_time=t.logged_time or 0.0,
        assignee_id=t.assignee_id,
        reporter_id=t.reporter_id,
        labels=t.labels or [],
        components=t.components or [],
        acceptance_criteria=t.acceptance_criteria or [],
        rank=t.rank,
        created_at=_ts(t.created_at),
        updated_at=_ts(t.updated_at),
    )


def _comment_to_out(c: TaskComment) -> CommentOut:
    return CommentOut(
        id=c.id, task_id=c.task_id, author_id=c.author_id, content=c.content,
        is_internal=c.is_internal or False,
        created_at=_ts(c.created_at), updated_at=_ts(c.updated_at),
    )


def _worklog_to_out(w: WorkLog) -> WorkLogOut:
    return WorkLogOut(
        id=w.id, task_id=w.task_id, user_id=w.user_id, time_spent=w.time_spent,
        description=w.description, work_date=_ts(w.work_date), created_at=_ts(w.created_at),
    )


# ============================================================
# TASK ENDPOINTS
# ============================================================

@router.post("/projects/{project_id}/tasks", response_model=TaskOut, status_code=201)
async def create_task(
    project_id: str,
    data: TaskCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a task at the end of its backlog/sprint column"""
    task = await TaskBoardEngine(db).create_task(project_id, data.model_dump(), user)
    return _task_to_out(task)


@router.get("/projects/{project_id}/tasks", response_model=List[TaskOut])
async def list_tasks(
    project_id: str,
    sprint_id: Optional[str] = None,
    backlog: bool = False,
    epic_id: Optional[str] = None,
    status: Optional[str] = None,
    assignee_id: Optional[str] = None,
    task_type: Optional[str] = None,
    priority: Optional[str] = None,
    search: Optional[str] = Query(None, max_length=200),
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    tasks = await TaskBoardEngine(db).list_tasks(
        project_id, user,
        sprint_id=sprint_id, backlog=backlog, epic_id=epic_id, status=status,
        assignee_id=assignee_id, task_type=task_type, priority=priority,
        search=search, limit=limit, offset=offset,
    )
    return [_task_to_out(t) for t in tasks]


@router.post("/tasks/batch-move", response_model=List[TaskOrderOut])
async def batch_move(
    data: BatchMove,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Move several cards into one column, WIP-checked as a batch"""
    tasks = await TaskBoardEngine(db).batch_move(data.task_ids, data.column_id, user, position=data.position)
    return [TaskOrderOut(id=t.id, status=TaskStatus(t.status).value, sprint_id=t.sprint_id, rank=t.rank) for t in tasks]


@router.get("/tasks/{task_id}", response_model=TaskOut)
async def get_task(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return _task_to_out(await TaskBoardEngine(db).get_task(task_id, user))


@router.patch("/tasks/{task_id}", response_model=TaskOut)
async def update_task(
    task_id: str,
    data: TaskUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    task = await TaskBoardEngine(db).update_task(task_id, data.model_dump(exclude_unset=True), user)
    return _task_to_out(task)


@router.delete("/tasks/{task_id}", status_code=204)
async def delete_task(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await TaskBoardEngine(db).delete_task(task_id, user)


@router.post("/tasks/{task_id}/move", response_model=TaskOut)
async def move_task(
    task_id: str,
    data: TaskMove,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Drop a card between two neighbours (either may be omitted)"""
    task = await TaskBoardEngine(db).move_task(
        task_id, user,
        prev_task_id=data.prev_task_id,
        next_task_id=data.next_task_id,
        target_status=data.target_status,
        target_sprint_id=data.target_sprint_id,
        to_backlog=data.to_backlog,
    )
    return _task_to_out(task)


@router.post("/tasks/{task_id}/reorder", response_model=TaskOut)
async def reorder_task(
    task_id: str,
    data: TaskReorder,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Drop a card at an index of a column"""
    task = await TaskBoardEngine(db).reorder_task(
        task_id, user,
        target_index=data.target_index, column_id=data.column_id, sprint_id=data.sprint_id,
    )
    return _task_to_out(task)


@router.post("/projects/{project_id}/tasks/batch-reorder", response_model=List[TaskOrderOut])
async def batch_reorder(
    project_id: str,
    data: BatchReorder,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    tasks = await TaskBoardEngine(db).batch_reorder(
        project_id, data.task_ids, user, sprint_id=data.sprint_id, status=data.status,
    )
    return [TaskOrderOut(id=t.id, status=TaskStatus(t.status).value, sprint_id=t.sprint_id, rank=t.rank) for t in tasks]


@router.post("/projects/{project_id}/tasks/rebalance")
async def rebalance_tasks(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Re-spread every ordering scope of the project"""
    return await TaskBoardEngine(db).rebalance_project(project_id, user)


@router.get("/projects/{project_id}/tasks/order")
async def validate_order(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Check ordering integrity without writing (500 order_corruption when broken)"""
    summary = await TaskBoardEngine(db).validate_task_order(project_id, user)
    return {"valid": True, **summary}


# ============================================================
# COMMENTS
# ============================================================

@router.get("/tasks/{task_id}/comments", response_model=List[CommentOut])
async def list_comments(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return [_comment_to_out(c) for c in await TaskNotes(db).list_comments(task_id, user)]


@router.post("/tasks/{task_id}/comments", response_model=CommentOut, status_code=201)
async def add_comment(
    task_id: str,
    data: CommentCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    comment = await TaskNotes(db).add_comment(task_id, data.content, user, is_internal=data.is_internal)
    return _comment_to_out(comment)


@router.patch("/comments/{comment_id}", response_model=CommentOut)
async def update_comment(
    comment_id: str,
    data: CommentUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return _comment_to_out(await TaskNotes(db).update_comment(comment_id, data.content, user))


@router.delete("/comments/{comment_id}", status_code=204)
async def delete_comment(
    comment_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await TaskNotes(db).delete_comment(comment_id, user)


# ============================================================
# WORK LOGS
# ============================================================

@router.get("/tasks/{task_id}/worklogs", response_model=List[WorkLogOut])
async def list_work_logs(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return [_worklog_to_out(w) for w in await TaskNotes(db).list_work_logs(task_id, user)]


@router.post("/tasks/{task_id}/worklogs", response_model=WorkLogOut, status_code=201)
async def log_work(
    task_id: str,
    data: WorkLogCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    entry = await TaskNotes(db).log_work(
        task_id, data.time_spent, user, work_date=data.work_date, description=data.description,
    )
    return _worklog_to_out(entry)


@router.delete("/worklogs/{work_log_id}", status_code=204)
async def delete_work_log(
    work_log_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await TaskNotes(db).delete_work_log(work_log_id, user)
