# routers/sprints.py — Sprint planning and the planned → active → closed lifecycle
from datetime import date, datetime
from typing import Optional, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from models import Sprint, SprintStatus
from planning import PlanningEngine

router = APIRouter(prefix="/api/v1/agile", tags=["Sprints"])


class SprintCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    goal: Optional[str] = None
    start_date: date
    end_date: date
    capacity: int = Field(0, ge=0)


class SprintUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    goal: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    capacity: Optional[int] = Field(None, ge=0)


class SprintOut(BaseModel):
    id: str
    project_id: str
    name: str
    description: Optional[str] = None
    goal: Optional[str] = None
    status: str
    start_date: str
    end_date: str
    capacity: int
    created_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() if isinstance(dt, (datetime, date)) else str(dt)


def _sprint_to_out(s: Sprint) -> SprintOut:
    return SprintOut(
        id=s.id, project_id=s.project_id, name=s.name,
        description=s.description, goal=s.goal,
        status=SprintStatus(s.status).value,
        start_date=_ts(s.start_date), end_date=_ts(s.end_date),
        capacity=s.capacity or 0, created_by=s.created_by,
        created_at=_ts(s.created_at), updated_at=_ts(s.updated_at),
    )


@router.post("/projects/{project_id}/sprints", response_model=SprintOut, status_code=201)
async def create_sprint(
    project_id: str,
    data: SprintCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return _sprint_to_out(await PlanningEngine(db).create_sprint(project_id, data.model_dump(), user))


@router.get("/projects/{project_id}/sprints", response_model=List[SprintOut])
async def list_sprints(
    project_id: str,
    status: Optional[str] = Query(None, pattern="^(planned|active|closed)$"),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Sprints of a project, newest start date first"""
    sprints = await PlanningEngine(db).list_sprints(project_id, user, status=status)
    return [_sprint_to_out(s) for s in sprints]


@router.get("/sprints/{sprint_id}", response_model=SprintOut)
async def get_sprint(
    sprint_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return _sprint_to_out(await PlanningEngine(db).get_sprint(sprint_id, user))


@router.patch("/sprints/{sprint_id}", response_model=SprintOut)
async def update_sprint(
    sprint_id: str,
    data: SprintUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    sprint = await PlanningEngine(db).update_sprint(sprint_id, data.model_dump(exclude_unset=True), user)
    return _sprint_to_out(sprint)


@router.delete("/sprints/{sprint_id}", status_code=204)
async def delete_sprint(
    sprint_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await PlanningEngine(db).delete_sprint(sprint_id, user)


@router.post("/sprints/{sprint_id}/start", response_model=SprintOut)
async def start_sprint(
    sprint_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return _sprint_to_out(await PlanningEngine(db).start_sprint(sprint_id, user))


@router.post("/sprints/{sprint_id}/complete", response_model=SprintOut)
async def complete_sprint(
    sprint_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Close an active sprint. Its tasks keep their sprint and status."""
    return _sprint_to_out(await PlanningEngine(db).complete_sprint(sprint_id, user))
