# routers/time_entries.py — Timer start/stop, manual entries, reports
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

import access_policy
from auth import get_current_user, require_permission, CurrentUser
from database import get_db_session
from errors import AuthorizationError
from models import Task, TimeEntry
from responses import CamelModel, ok, pagination
from timer_engine import TimerEngine

router = APIRouter(prefix="/api/v1/time-entries", tags=["Time Entries"])


def get_timer_engine(db: AsyncSession = Depends(get_db_session)) -> TimerEngine:
    return TimerEngine(db)


# ============================================================
# SCHEMAS
# ============================================================

class StartTimerIn(CamelModel):
    task_id: str = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=5000)


class StopTimerIn(CamelModel):
    time_entry_id: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=5000)


class ManualEntryIn(CamelModel):
    task_id: str = Field(..., min_length=1)
    start_time: datetime
    end_time: datetime
    notes: Optional[str] = Field(None, max_length=5000)
    is_billable: bool = True


class TimeEntryUpdate(CamelModel):
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=5000)
    is_billable: Optional[bool] = None


class ProjectRef(CamelModel):
    id: str
    name: str


class TaskRef(CamelModel):
    id: str
    title: str
    project: Optional[ProjectRef] = None


class TimeEntryOut(CamelModel):
    id: str
    task_id: str
    user_id: str
    start_time: str
    end_time: Optional[str] = None
    duration: Optional[int] = None
    notes: Optional[str] = None
    is_billable: bool
    duration_flagged: bool = False
    task: Optional[TaskRef] = None


class ActiveTimerOut(TimeEntryOut):
    elapsed_seconds: int


# ============================================================
# HELPERS
# ============================================================

def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() if isinstance(dt, datetime) else str(dt)


def _task_ref(task: Optional[Task]) -> Optional[TaskRef]:
    if task is None:
        return None
    project = ProjectRef(id=task.project.id, name=task.project.name) if task.project else None
    return TaskRef(id=task.id, title=task.title, project=project)


def _entry_out(entry: TimeEntry, task: Optional[Task] = None) -> TimeEntryOut:
    return TimeEntryOut(
        id=entry.id,
        task_id=entry.task_id,
        user_id=entry.user_id,
        start_time=_ts(entry.start_time),
        end_time=_ts(entry.end_time),
        duration=entry.duration,
        notes=entry.notes,
        is_billable=bool(entry.is_billable),
        duration_flagged=bool(entry.duration_flagged),
        task=_task_ref(task),
    )


async def _load_task(db: AsyncSession, task_id: str) -> Optional[Task]:
    stmt = (
        select(Task).where(Task.id == task_id)
        .options(selectinload(Task.project))
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


# ============================================================
# TIMER
# ============================================================

@router.post("/start", status_code=201)
async def start_timer(
    data: StartTimerIn,
    user: CurrentUser = Depends(require_permission("time:track")),
    engine: TimerEngine = Depends(get_timer_engine),
):
    entry = await engine.start_timer(user.id, user.role, data.task_id, data.notes)
    task = await _load_task(engine.db, entry.task_id)
    return ok(_entry_out(entry, task), "Timer started")


@router.post("/stop")
async def stop_timer(
    data: StopTimerIn,
    user: CurrentUser = Depends(get_current_user),
    engine: TimerEngine = Depends(get_timer_engine),
):
    entry = await engine.stop_timer(user.id, user.role, data.time_entry_id, data.notes)
    task = await _load_task(engine.db, entry.task_id)
    return ok(_entry_out(entry, task), "Timer stopped")


@router.get("/active")
async def get_active_timer(
    user: CurrentUser = Depends(get_current_user),
    engine: TimerEngine = Depends(get_timer_engine),
):
    active = await engine.get_active_timer(user.id)
    if active is None:
        return ok(None, include_data=True)
    task = await _load_task(engine.db, active.entry.task_id)
    out = _entry_out(active.entry, task)
    return ok(ActiveTimerOut(**out.model_dump(), elapsed_seconds=active.elapsed_seconds))


# ============================================================
# MANUAL ENTRIES
# ============================================================

@router.post("/manual", status_code=201)
async def create_manual_entry(
    data: ManualEntryIn,
    user: CurrentUser = Depends(require_permission("time:track")),
    engine: TimerEngine = Depends(get_timer_engine),
):
    entry = await engine.create_manual_entry(
        user.id, user.role, data.task_id, data.start_time, data.end_time,
        notes=data.notes, is_billable=data.is_billable,
    )
    task = await _load_task(engine.db, entry.task_id)
    return ok(_entry_out(entry, task), "Time entry created")


@router.patch("/{entry_id}")
async def update_entry(
    entry_id: str,
    data: TimeEntryUpdate,
    user: CurrentUser = Depends(get_current_user),
    engine: TimerEngine = Depends(get_timer_engine),
):
    entry = await engine.update_entry(user.id, user.role, entry_id, data.model_dump(exclude_unset=True))
    task = await _load_task(engine.db, entry.task_id)
    return ok(_entry_out(entry, task), "Time entry updated")


@router.delete("/{entry_id}")
async def delete_entry(
    entry_id: str,
    user: CurrentUser = Depends(get_current_user),
    engine: TimerEngine = Depends(get_timer_engine),
):
    await engine.delete_entry(user.id, user.role, entry_id)
    return ok(message="Time entry deleted")


# ============================================================
# QUERIES & REPORTS
# ============================================================

@router.get("")
async def list_entries(
    task_id: Optional[str] = Query(None, alias="taskId"),
    project_id: Optional[str] = Query(None, alias="projectId"),
    user_id: Optional[str] = Query(None, alias="userId"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    is_billable: Optional[bool] = Query(None, alias="isBillable"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: CurrentUser = Depends(get_current_user),
    engine: TimerEngine = Depends(get_timer_engine),
):
    filters = {
        "task_id": task_id, "project_id": project_id, "user_id": user_id,
        "start_date": start_date, "end_date": end_date, "is_billable": is_billable,
    }
    entries, total = await engine.list_entries(user.id, user.role, filters, page, limit)
    return ok({
        "entries": [_entry_out(e, e.task).model_dump(by_alias=True) for e in entries],
        "pagination": pagination(total, page, limit),
    })


@router.get("/stats")
async def my_stats(
    user: CurrentUser = Depends(get_current_user),
    engine: TimerEngine = Depends(get_timer_engine),
):
    return ok(await engine.user_time_stats(user.id))


@router.get("/stats/{user_id}")
async def user_stats(
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    engine: TimerEngine = Depends(get_timer_engine),
):
    if not access_policy.can_view_time_of(user.role, user.id, user_id):
        raise AuthorizationError("You can only view your own time statistics")
    return ok(await engine.user_time_stats(user_id))


@router.get("/project/{project_id}/report")
async def project_report(
    project_id: str,
    user: CurrentUser = Depends(require_permission("time:reports")),
    engine: TimerEngine = Depends(get_timer_engine),
):
    return ok(await engine.project_time_report(project_id))
