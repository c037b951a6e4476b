# routers/epics.py — Epics grouping tasks across sprints
from datetime import date, datetime
from typing import Optional, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from models import Epic, EpicStatus
from planning import PlanningEngine

router = APIRouter(prefix="/api/v1/agile", tags=["Epics"])


class EpicCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    status: str = "open"
    color: Optional[str] = Field(None, min_length=7, max_length=7)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    goal: Optional[str] = None
    success_criteria: Optional[str] = None


class EpicUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    status: Optional[str] = None
    color: Optional[str] = Field(None, min_length=7, max_length=7)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    goal: Optional[str] = None
    success_criteria: Optional[str] = None


class EpicOut(BaseModel):
    id: str
    project_id: str
    name: str
    description: Optional[str] = None
    status: str
    color: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    goal: Optional[str] = None
    success_criteria: Optional[str] = None
    created_at: Optional[str] = None


def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() if isinstance(dt, (datetime, date)) else str(dt)


def _epic_to_out(e: Epic) -> EpicOut:
    return EpicOut(
        id=e.id, project_id=e.project_id, name=e.name, description=e.description,
        status=EpicStatus(e.status).value, color=e.color,
        start_date=_ts(e.start_date), end_date=_ts(e.end_date),
        goal=e.goal, success_criteria=e.success_criteria, created_at=_ts(e.created_at),
    )


@router.post("/projects/{project_id}/epics", response_model=EpicOut, status_code=201)
async def create_epic(
    project_id: str,
    data: EpicCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return _epic_to_out(await PlanningEngine(db).create_epic(project_id, data.model_dump(), user))


@router.get("/projects/{project_id}/epics", response_model=List[EpicOut])
async def list_epics(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return [_epic_to_out(e) for e in await PlanningEngine(db).list_epics(project_id, user)]


@router.get("/epics/{epic_id}", response_model=EpicOut)
async def get_epic(
    epic_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return _epic_to_out(await PlanningEngine(db).get_epic(epic_id, user))


@router.patch("/epics/{epic_id}", response_model=EpicOut)
async def update_epic(
    epic_id: str,
    data: EpicUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    epic = await PlanningEngine(db).update_epic(epic_id, data.model_dump(exclude_unset=True), user)
    return _epic_to_out(epic)


@router.delete("/epics/{epic_id}", status_code=204)
async def delete_epic(
    epic_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await PlanningEngine(db).delete_epic(epic_id, user)
