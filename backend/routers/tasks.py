# routers/tasks.py — Task management, comments, activity and QC review
from datetime import datetime
from typing import Optional, List, Any

from fastapi import APIRouter, Depends, Query
from pydantic import Field, field_validator
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

import access_policy
import activity_log
from auth import get_current_user, require_permission, CurrentUser
from database import get_db_session
from errors import AuthorizationError, NotFoundError, ValidationError
from models import (
    ActivityAction, Milestone, Notification, NotificationType, Project, ReviewStatus,
    Task, TaskComment, TaskPriority, TaskStatus, User, as_utc, utcnow,
)
from responses import CamelModel, not_null, ok, pagination
from review_workflow import ReviewWorkflow, resubmit_for_review

router = APIRouter(prefix="/api/v1/tasks", tags=["Tasks"])

TRACKED_FIELDS = (
    "title", "description", "status", "priority", "assignee_id",
    "milestone_id", "due_date", "estimated_hours",
)


# ============================================================
# SCHEMAS
# ============================================================

class TaskCreate(CamelModel):
    project_id: str
    milestone_id: Optional[str] = None
    assignee_id: Optional[str] = None
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    estimated_hours: Optional[float] = Field(None, ge=0)
    due_date: Optional[datetime] = None


class TaskUpdate(CamelModel):
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    assignee_id: Optional[str] = None
    milestone_id: Optional[str] = None
    estimated_hours: Optional[float] = Field(None, ge=0)
    due_date: Optional[datetime] = None

    @field_validator("title", "status", "priority")
    @classmethod
    def reject_null(cls, v):
        return not_null(v)


class ReviewIn(CamelModel):
    review_status: ReviewStatus
    review_comment: Optional[str] = Field(None, max_length=5000)
    has_bugs: bool = False


class CommentCreate(CamelModel):
    content: str = Field(..., min_length=1, max_length=10000)


class UserRef(CamelModel):
    id: str
    first_name: str
    last_name: str


class CommentOut(CamelModel):
    id: str
    user: Optional[UserRef] = None
    content: str
    created_at: Optional[str] = None


class ActivityOut(CamelModel):
    id: str
    action: str
    field: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    metadata: dict = {}
    user: Optional[UserRef] = None
    created_at: Optional[str] = None


class TaskOut(CamelModel):
    id: str
    project_id: str
    project_name: Optional[str] = None
    milestone_id: Optional[str] = None
    assignee_id: Optional[str] = None
    assignee: Optional[UserRef] = None
    created_by_id: str
    title: str
    description: Optional[str] = None
    status: str
    priority: str
    estimated_hours: Optional[float] = None
    due_date: Optional[str] = None
    completed_at: Optional[str] = None
    review_status: Optional[str] = None
    review_comment: Optional[str] = None
    reviewed_by_id: Optional[str] = None
    reviewed_at: Optional[str] = None
    has_bugs: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class TaskDetailOut(TaskOut):
    comments: List[CommentOut] = []
    activities: List[ActivityOut] = []


# ============================================================
# HELPERS
# ============================================================

def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() if isinstance(dt, datetime) else str(dt)


def _val(v) -> Optional[str]:
    return v.value if hasattr(v, "value") else v


def _user_ref(u: Optional[User]) -> Optional[UserRef]:
    if u is None:
        return None
    return UserRef(id=u.id, first_name=u.first_name, last_name=u.last_name)


def _task_to_out(t: Task) -> TaskOut:
    return TaskOut(
        id=t.id,
        project_id=t.project_id,
        project_name=t.project.name if t.project else None,
        milestone_id=t.milestone_id,
        assignee_id=t.assignee_id,
        assignee=_user_ref(t.assignee),
        created_by_id=t.created_by_id,
        title=t.title,
        description=t.description,
        status=_val(t.status),
        priority=_val(t.priority),
        estimated_hours=float(t.estimated_hours) if t.estimated_hours is not None else None,
        due_date=_ts(t.due_date),
        completed_at=_ts(t.completed_at),
        review_status=_val(t.review_status),
        review_comment=t.review_comment,
        reviewed_by_id=t.reviewed_by_id,
        reviewed_at=_ts(t.reviewed_at),
        has_bugs=bool(t.has_bugs),
        created_at=_ts(t.created_at),
        updated_at=_ts(t.updated_at),
    )


def _activity_out(a) -> ActivityOut:
    return ActivityOut(
        id=a.id, action=_val(a.action), field=a.field,
        old_value=a.old_value, new_value=a.new_value,
        metadata=a.extra_data or {}, user=_user_ref(a.user),
        created_at=_ts(a.created_at),
    )


async def _get_task(db: AsyncSession, task_id: str) -> Task:
    stmt = (
        select(Task)
        .where(Task.id == task_id)
        .options(selectinload(Task.project), selectinload(Task.assignee))
        .execution_options(populate_existing=True)
    )
    task = (await db.execute(stmt)).scalar_one_or_none()
    if not task:
        raise NotFoundError("Task not found")
    return task


async def _ensure_user(db: AsyncSession, user_id: str) -> User:
    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if not user or not user.is_active:
        raise ValidationError("Assignee not found", errors={"assigneeId": ["Unknown or inactive user"]})
    return user


async def _ensure_milestone(db: AsyncSession, milestone_id: str, project_id: str) -> None:
    milestone = (await db.execute(
        select(Milestone).where(Milestone.id == milestone_id)
    )).scalar_one_or_none()
    if not milestone or milestone.project_id != project_id:
        raise ValidationError(
            "Milestone does not belong to this project",
            errors={"milestoneId": ["Milestone does not belong to this project"]},
        )


def _notify_assignment(db: AsyncSession, task: Task, assignee_id: str) -> None:
    db.add(Notification(
        user_id=assignee_id,
        title="New Task Assigned",
        message=f'You have been assigned to task "{task.title}"',
        type=NotificationType.TASK_ASSIGNED,
        data={"task_id": task.id, "project_id": task.project_id},
    ))


def _unchanged(old: Any, new: Any) -> bool:
    if isinstance(old, datetime) or isinstance(new, datetime):
        return as_utc(old) == as_utc(new)
    return old == new


# ============================================================
# LIST
# ============================================================

@router.get("")
async def list_tasks(
    project_id: Optional[str] = Query(None, alias="projectId"),
    status: Optional[TaskStatus] = Query(None),
    assignee_id: Optional[str] = Query(None, alias="assigneeId"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: CurrentUser = Depends(require_permission("tasks:read")),
    db: AsyncSession = Depends(get_db_session),
):
    """List tasks. Contributors only see tasks assigned to them."""
    stmt = select(Task)
    if access_policy.restricted_to_own(user.role):
        stmt = stmt.where(Task.assignee_id == user.id)
    elif assignee_id:
        stmt = stmt.where(Task.assignee_id == assignee_id)
    if project_id:
        stmt = stmt.where(Task.project_id == project_id)
    if status:
        stmt = stmt.where(Task.status == status)

    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar() or 0
    stmt = (
        stmt.options(selectinload(Task.project), selectinload(Task.assignee))
        .order_by(Task.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    tasks = (await db.execute(stmt)).scalars().all()
    return ok({
        "tasks": [_task_to_out(t).model_dump(by_alias=True) for t in tasks],
        "pagination": pagination(total, page, limit),
    })


@router.get("/my")
async def my_tasks(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    stmt = (
        select(Task)
        .where(Task.assignee_id == user.id, Task.status != TaskStatus.COMPLETED)
        .options(selectinload(Task.project), selectinload(Task.assignee))
        .order_by(Task.due_date.asc(), Task.created_at.desc())
    )
    tasks = (await db.execute(stmt)).scalars().all()
    return ok([_task_to_out(t) for t in tasks])


@router.get("/review/pending")
async def tasks_for_review(
    project_id: Optional[str] = Query(None, alias="projectId"),
    user: CurrentUser = Depends(require_permission("tasks:review")),
    db: AsyncSession = Depends(get_db_session),
):
    tasks = await ReviewWorkflow(db).get_tasks_for_review(project_id)
    return ok([_task_to_out(t) for t in tasks])


# ============================================================
# CRUD
# ============================================================

@router.get("/{task_id}")
async def get_task(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    task = await _get_task(db, task_id)
    if not access_policy.can_view_task(user.role, user.id, task.assignee_id):
        raise AuthorizationError("You do not have access to this task")

    comments = (await db.execute(
        select(TaskComment)
        .where(TaskComment.task_id == task.id)
        .options(selectinload(TaskComment.user))
        .order_by(TaskComment.created_at)
    )).scalars().all()
    activities = await activity_log.list_for_task(db, task.id)

    out = TaskDetailOut(
        **_task_to_out(task).model_dump(),
        comments=[
            CommentOut(id=c.id, user=_user_ref(c.user), content=c.content, created_at=_ts(c.created_at))
            for c in comments
        ],
        activities=[_activity_out(a) for a in activities],
    )
    return ok(out)


@router.post("", status_code=201)
async def create_task(
    data: TaskCreate,
    user: CurrentUser = Depends(require_permission("tasks:create")),
    db: AsyncSession = Depends(get_db_session),
):
    project = (await db.execute(select(Project).where(Project.id == data.project_id))).scalar_one_or_none()
    if not project:
        raise NotFoundError("Project not found")
    if data.milestone_id:
        await _ensure_milestone(db, data.milestone_id, project.id)
    if data.assignee_id:
        await _ensure_user(db, data.assignee_id)

    task = Task(
        project_id=project.id,
        milestone_id=data.milestone_id,
        assignee_id=data.assignee_id,
        created_by_id=user.id,
        title=data.title,
        description=data.description,
        priority=data.priority,
        estimated_hours=data.estimated_hours,
        due_date=data.due_date,
    )
    db.add(task)
    await db.flush()

    activity_log.record_creation(db, task.id, user.id)
    if task.assignee_id:
        _notify_assignment(db, task, task.assignee_id)
    await db.commit()

    task = await _get_task(db, task.id)
    return ok(_task_to_out(task), "Task created")


@router.patch("/{task_id}")
async def update_task(
    task_id: str,
    data: TaskUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Update a task field by field; each changed field leaves one activity row."""
    task = await _get_task(db, task_id)
    if not access_policy.can_update_task(user.role, user.id, task.assignee_id):
        raise AuthorizationError("You can only update tasks assigned to you")

    changes = data.model_dump(exclude_unset=True)
    if not access_policy.can_edit_task_fields(user.role, changes):
        raise AuthorizationError("QC can only change the status of a task")
    if "assignee_id" in changes and changes["assignee_id"] != task.assignee_id:
        if not access_policy.can_reassign_task(user.role):
            raise AuthorizationError("You cannot reassign tasks")
        if changes["assignee_id"]:
            await _ensure_user(db, changes["assignee_id"])
    if changes.get("milestone_id"):
        await _ensure_milestone(db, changes["milestone_id"], task.project_id)

    for field in TRACKED_FIELDS:
        if field not in changes:
            continue
        old, new = getattr(task, field), changes[field]
        if _unchanged(old, new):
            continue
        activity_log.record_change(db, task.id, user.id, field, old, new)
        setattr(task, field, new)

        if field == "status":
            if new == TaskStatus.COMPLETED:
                task.completed_at = utcnow()
                activity_log.record(db, task.id, user.id, ActivityAction.COMPLETED)
            else:
                task.completed_at = None
            if new == TaskStatus.IN_REVIEW:
                resubmit_for_review(db, task, user.id)
        elif field == "assignee_id" and new:
            _notify_assignment(db, task, new)

    await db.commit()
    task = await _get_task(db, task.id)
    return ok(_task_to_out(task), "Task updated")


@router.delete("/{task_id}")
async def delete_task(
    task_id: str,
    user: CurrentUser = Depends(require_permission("tasks:delete")),
    db: AsyncSession = Depends(get_db_session),
):
    task = await _get_task(db, task_id)
    await db.delete(task)
    await db.commit()
    return ok(message="Task deleted")


# ============================================================
# COMMENTS & ACTIVITY
# ============================================================

@router.post("/{task_id}/comments", status_code=201)
async def add_comment(
    task_id: str,
    data: CommentCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    task = await _get_task(db, task_id)
    if not access_policy.can_view_task(user.role, user.id, task.assignee_id):
        raise AuthorizationError("You do not have access to this task")

    comment = TaskComment(task_id=task.id, user_id=user.id, content=data.content)
    db.add(comment)
    await db.flush()
    activity_log.record(db, task.id, user.id, ActivityAction.COMMENTED, metadata={"comment_id": comment.id})
    await db.commit()

    return ok(CommentOut(
        id=comment.id,
        user=UserRef(id=user.id, first_name=user.first_name, last_name=user.last_name),
        content=comment.content,
        created_at=_ts(comment.created_at),
    ), "Comment added")


@router.get("/{task_id}/activity")
async def task_activity(
    task_id: str,
    limit: int = Query(50, ge=1, le=200),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    task = await _get_task(db, task_id)
    if not access_policy.can_view_task(user.role, user.id, task.assignee_id):
        raise AuthorizationError("You do not have access to this task")
    activities = await activity_log.list_for_task(db, task.id, limit=limit)
    return ok([_activity_out(a) for a in activities])


# ============================================================
# REVIEW
# ============================================================

@router.post("/{task_id}/review")
async def review_task(
    task_id: str,
    data: ReviewIn,
    user: CurrentUser = Depends(require_permission("tasks:review")),
    db: AsyncSession = Depends(get_db_session),
):
    await ReviewWorkflow(db).review_task(
        user.id, user.role, task_id, data.review_status,
        review_comment=data.review_comment, has_bugs=data.has_bugs,
    )
    task = await _get_task(db, task_id)
    return ok(_task_to_out(task), "Task reviewed successfully")
