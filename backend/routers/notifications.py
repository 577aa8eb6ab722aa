# routers/notifications.py — In-app notifications for the current user
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from errors import NotFoundError
from models import Notification
from responses import CamelModel, ok

router = APIRouter(prefix="/api/v1/notifications", tags=["Notifications"])


class NotificationOut(CamelModel):
    id: str
    title: str
    message: str
    type: str
    data: dict = {}
    is_read: bool
    created_at: Optional[str] = None


def _notif_out(n: Notification) -> NotificationOut:
    return NotificationOut(
        id=n.id, title=n.title, message=n.message,
        type=n.type.value if hasattr(n.type, "value") else str(n.type),
        data=n.data or {},
        is_read=bool(n.is_read),
        created_at=n.created_at.isoformat() if n.created_at else None,
    )


# ============================================================
# LIST
# ============================================================

@router.get("")
async def list_notifications(
    unread_only: bool = Query(default=False, alias="unreadOnly"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    query = select(Notification).where(Notification.user_id == user.id)
    if unread_only:
        query = query.where(Notification.is_read.is_(False))
    query = query.order_by(Notification.created_at.desc()).offset(offset).limit(limit)
    result = await db.execute(query)
    return ok([_notif_out(n) for n in result.scalars().all()])


@router.get("/unread-count")
async def unread_count(
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    count = (await db.execute(
        select(func.count(Notification.id)).where(
            Notification.user_id == user.id,
            Notification.is_read.is_(False),
        )
    )).scalar() or 0
    return ok({"count": count})


# ============================================================
# MARK READ
# ============================================================

@router.patch("/read-all")
async def mark_all_read(
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    result = await db.execute(
        select(Notification).where(
            Notification.user_id == user.id,
            Notification.is_read.is_(False),
        )
    )
    notifications = result.scalars().all()
    for n in notifications:
        n.is_read = True
    await db.commit()
    return ok({"marked": len(notifications)}, "All notifications marked as read")


@router.patch("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    result = await db.execute(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user.id,
        )
    )
    notif = result.scalar_one_or_none()
    if not notif:
        raise NotFoundError("Notification not found")
    notif.is_read = True
    await db.commit()
    return ok(_notif_out(notif))
