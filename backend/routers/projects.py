# routers/projects.py — Projects and their payment milestones
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field, field_validator
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from auth import require_permission, CurrentUser
from database import get_db_session
from errors import NotFoundError
from models import Milestone, MilestoneStatus, Project, ProjectStatus, Task, TaskStatus
from responses import CamelModel, not_null, ok

router = APIRouter(prefix="/api/v1/projects", tags=["Projects"])


# ============================================================
# SCHEMAS
# ============================================================

class ProjectCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None


class ProjectUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    status: Optional[ProjectStatus] = None

    @field_validator("name", "status")
    @classmethod
    def reject_null(cls, v):
        return not_null(v)


class MilestoneCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    amount: Optional[float] = Field(None, ge=0)
    currency: str = Field("USD", min_length=3, max_length=3)
    due_date: Optional[datetime] = None


class MilestoneUpdate(CamelModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    amount: Optional[float] = Field(None, ge=0)
    status: Optional[MilestoneStatus] = None
    due_date: Optional[datetime] = None

    @field_validator("title", "status")
    @classmethod
    def reject_null(cls, v):
        return not_null(v)


class MilestoneOut(CamelModel):
    id: str
    project_id: str
    title: str
    description: Optional[str] = None
    amount: Optional[float] = None
    currency: str
    status: str
    due_date: Optional[str] = None


class ProjectOut(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    status: str
    created_by_id: str
    task_count: int = 0
    completed_task_count: int = 0
    created_at: Optional[str] = None


def _ts(dt) -> Optional[str]:
    return dt.isoformat() if dt else None


def _milestone_out(m: Milestone) -> MilestoneOut:
    return MilestoneOut(
        id=m.id, project_id=m.project_id, title=m.title, description=m.description,
        amount=float(m.amount) if m.amount is not None else None,
        currency=m.currency or "USD",
        status=m.status.value if hasattr(m.status, "value") else m.status,
        due_date=_ts(m.due_date),
    )


async def _project_out(db: AsyncSession, p: Project) -> ProjectOut:
    total = (await db.execute(
        select(func.count(Task.id)).where(Task.project_id == p.id)
    )).scalar() or 0
    done = (await db.execute(
        select(func.count(Task.id)).where(Task.project_id == p.id, Task.status == TaskStatus.COMPLETED)
    )).scalar() or 0
    return ProjectOut(
        id=p.id, name=p.name, description=p.description,
        status=p.status.value if hasattr(p.status, "value") else p.status,
        created_by_id=p.created_by_id,
        task_count=total, completed_task_count=done,
        created_at=_ts(p.created_at),
    )


async def _get_project(db: AsyncSession, project_id: str) -> Project:
    project = (await db.execute(select(Project).where(Project.id == project_id))).scalar_one_or_none()
    if not project:
        raise NotFoundError("Project not found")
    return project


# ============================================================
# PROJECTS
# ============================================================

@router.get("")
async def list_projects(
    status: Optional[ProjectStatus] = Query(None),
    user: CurrentUser = Depends(require_permission("projects:read")),
    db: AsyncSession = Depends(get_db_session),
):
    stmt = select(Project).order_by(Project.created_at.desc())
    if status:
        stmt = stmt.where(Project.status == status)
    projects = (await db.execute(stmt)).scalars().all()
    return ok([await _project_out(db, p) for p in projects])


@router.post("", status_code=201)
async def create_project(
    data: ProjectCreate,
    user: CurrentUser = Depends(require_permission("projects:write")),
    db: AsyncSession = Depends(get_db_session),
):
    project = Project(name=data.name, description=data.description, created_by_id=user.id)
    db.add(project)
    await db.commit()
    return ok(await _project_out(db, project), "Project created")


@router.get("/{project_id}")
async def get_project(
    project_id: str,
    user: CurrentUser = Depends(require_permission("projects:read")),
    db: AsyncSession = Depends(get_db_session),
):
    project = await _get_project(db, project_id)
    return ok(await _project_out(db, project))


@router.patch("/{project_id}")
async def update_project(
    project_id: str,
    data: ProjectUpdate,
    user: CurrentUser = Depends(require_permission("projects:write")),
    db: AsyncSession = Depends(get_db_session),
):
    project = await _get_project(db, project_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(project, field, value)
    await db.commit()
    return ok(await _project_out(db, project), "Project updated")


# ============================================================
# MILESTONES
# ============================================================

@router.get("/{project_id}/milestones")
async def list_milestones(
    project_id: str,
    user: CurrentUser = Depends(require_permission("projects:read")),
    db: AsyncSession = Depends(get_db_session),
):
    await _get_project(db, project_id)
    stmt = select(Milestone).where(Milestone.project_id == project_id).order_by(Milestone.due_date)
    milestones = (await db.execute(stmt)).scalars().all()
    return ok([_milestone_out(m) for m in milestones])


@router.post("/{project_id}/milestones", status_code=201)
async def create_milestone(
    project_id: str,
    data: MilestoneCreate,
    user: CurrentUser = Depends(require_permission("milestones:write")),
    db: AsyncSession = Depends(get_db_session),
):
    await _get_project(db, project_id)
    milestone = Milestone(project_id=project_id, **data.model_dump())
    db.add(milestone)
    await db.commit()
    return ok(_milestone_out(milestone), "Milestone created")


@router.patch("/{project_id}/milestones/{milestone_id}")
async def update_milestone(
    project_id: str,
    milestone_id: str,
    data: MilestoneUpdate,
    user: CurrentUser = Depends(require_permission("milestones:write")),
    db: AsyncSession = Depends(get_db_session),
):
    milestone = (await db.execute(
        select(Milestone).where(Milestone.id == milestone_id, Milestone.project_id == project_id)
    )).scalar_one_or_none()
    if not milestone:
        raise NotFoundError("Milestone not found")
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(milestone, field, value)
    await db.commit()
    return ok(_milestone_out(milestone), "Milestone updated")
