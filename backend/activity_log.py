# activity_log.py — Append-only task activity trail
# Rows are only ever inserted; nothing in the application updates or deletes them.
# Writers add to the caller's session and leave the commit to the caller so the
# activity lands in the same transaction as the change it describes.
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from models import ActivityAction, TaskActivity

FIELD_ACTIONS = {
    "status": ActivityAction.STATUS_CHANGED,
    "assignee_id": ActivityAction.ASSIGNEE_CHANGED,
    "priority": ActivityAction.PRIORITY_CHANGED,
    "due_date": ActivityAction.DUE_DATE_CHANGED,
    "description": ActivityAction.DESCRIPTION_CHANGED,
    "title": ActivityAction.TITLE_CHANGED,
    "milestone_id": ActivityAction.MILESTONE_CHANGED,
    "review_status": ActivityAction.REVIEW_STATUS_CHANGED,
}


def action_for_field(field: str) -> ActivityAction:
    return FIELD_ACTIONS.get(field, ActivityAction.UPDATED)


def _stringify(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def record(
    db: AsyncSession,
    task_id: str,
    user_id: str,
    action: ActivityAction,
    field: Optional[str] = None,
    old_value: Any = None,
    new_value: Any = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> TaskActivity:
    entry = TaskActivity(
        task_id=task_id,
        user_id=user_id,
        action=action,
        field=field,
        old_value=_stringify(old_value),
        new_value=_stringify(new_value),
        extra_data=metadata or {},
    )
    db.add(entry)
    return entry


def record_change(
    db: AsyncSession,
    task_id: str,
    user_id: str,
    field: str,
    old_value: Any,
    new_value: Any,
    metadata: Optional[Dict[str, Any]] = None,
) -> Optional[TaskActivity]:
    """Record one field change. Returns None when nothing changed."""
    old_s, new_s = _stringify(old_value), _stringify(new_value)
    if old_s == new_s:
        return None
    return record(
        db, task_id, user_id, action_for_field(field),
        field=field, old_value=old_s, new_value=new_s, metadata=metadata,
    )


def record_creation(db: AsyncSession, task_id: str, user_id: str) -> TaskActivity:
    return record(db, task_id, user_id, ActivityAction.CREATED)


def record_timer_start(db: AsyncSession, task_id: str, user_id: str, time_entry_id: str) -> TaskActivity:
    return record(
        db, task_id, user_id, ActivityAction.TIMER_STARTED,
        metadata={"time_entry_id": time_entry_id},
    )


def record_timer_stop(
    db: AsyncSession, task_id: str, user_id: str, time_entry_id: str, duration: int,
    clamped: bool = False,
) -> TaskActivity:
    metadata = {"time_entry_id": time_entry_id, "duration": duration}
    if clamped:
        metadata["clamped"] = True
    return record(db, task_id, user_id, ActivityAction.TIMER_STOPPED, metadata=metadata)


async def list_for_task(db: AsyncSession, task_id: str, limit: int = 20) -> List[TaskActivity]:
    stmt = (
        select(TaskActivity)
        .where(TaskActivity.task_id == task_id)
        .options(selectinload(TaskActivity.user))
        .order_by(TaskActivity.created_at.desc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())
