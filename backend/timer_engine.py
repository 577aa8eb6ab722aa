# timer_engine.py — Time entry lifecycle
# Invariant: a user owns at most one TimeEntry with end_time IS NULL.
# The pre-check gives a friendly error; the partial unique index
# uq_time_entries_active_user settles concurrent starts inside the store.

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

import access_policy
import activity_log
from errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from models import Project, Task, TaskStatus, TimeEntry, User, UserRole, as_utc, utcnow
from telemetry import span

logger = logging.getLogger("tracklane.timer")

ACTIVE_TIMER_MESSAGE = "You already have an active timer. Stop it first."


def compute_duration(start: datetime, end: datetime) -> Tuple[int, bool]:
    """Whole seconds between start and end, clamped at 0.

    Returns (seconds, clamped). clamped is True when the raw value was
    negative, which only happens with clock skew between writers.
    """
    seconds = math.floor((as_utc(end) - as_utc(start)).total_seconds())
    if seconds < 0:
        return 0, True
    return seconds, False


def start_of_week(now: datetime) -> datetime:
    day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return day - timedelta(days=day.weekday())


def start_of_month(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def _hours(seconds: int) -> float:
    return round(seconds / 3600, 2)


@dataclass
class ActiveTimer:
    entry: TimeEntry
    elapsed_seconds: int


class TimerEngine:
    """Start, stop and edit time entries for one request's session."""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    # --------------------------------------------------------
    # Lookups
    # --------------------------------------------------------

    async def _get_task(self, task_id: str) -> Task:
        result = await self.db.execute(select(Task).where(Task.id == task_id))
        task = result.scalar_one_or_none()
        if not task:
            raise NotFoundError("Task not found")
        return task

    async def _get_entry(self, entry_id: str) -> TimeEntry:
        result = await self.db.execute(select(TimeEntry).where(TimeEntry.id == entry_id))
        entry = result.scalar_one_or_none()
        if not entry:
            raise NotFoundError("Time entry not found")
        return entry

    async def running_entry(self, user_id: str) -> Optional[TimeEntry]:
        stmt = select(TimeEntry).where(
            TimeEntry.user_id == user_id,
            TimeEntry.end_time.is_(None),
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    # --------------------------------------------------------
    # Timer
    # --------------------------------------------------------

    async def start_timer(
        self, user_id: str, role: UserRole, task_id: str, notes: Optional[str] = None,
    ) -> TimeEntry:
        task = await self._get_task(task_id)
        if not access_policy.can_track_time_on(role, user_id, task.assignee_id):
            raise AuthorizationError("You do not have access to this task")

        if await self.running_entry(user_id) is not None:
            raise ConflictError(ACTIVE_TIMER_MESSAGE, code="TL-TIMER-001")

        entry = TimeEntry(
            task_id=task.id,
            user_id=user_id,
            start_time=self.clock(),
            notes=notes,
        )
        self.db.add(entry)
        with span("timer.start", user_id=user_id, task_id=task.id):
            try:
                await self.db.flush()
                activity_log.record_timer_start(self.db, task.id, user_id, entry.id)
                if task.status == TaskStatus.TODO:
                    activity_log.record_change(
                        self.db, task.id, user_id, "status", task.status, TaskStatus.IN_PROGRESS,
                    )
                    task.status = TaskStatus.IN_PROGRESS
                await self.db.commit()
            except IntegrityError:
                # Lost the race against a concurrent start for the same user
                await self.db.rollback()
                raise ConflictError(ACTIVE_TIMER_MESSAGE, code="TL-TIMER-001")

        logger.info(f"Timer started: entry={entry.id} user={user_id} task={task.id}")
        return entry

    async def stop_timer(
        self,
        user_id: str,
        role: UserRole,
        time_entry_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> TimeEntry:
        if time_entry_id:
            result = await self.db.execute(select(TimeEntry).where(TimeEntry.id == time_entry_id))
            entry = result.scalar_one_or_none()
            if entry is None:
                raise NotFoundError("No active timer found")
            if not access_policy.can_modify_time_entry(role, user_id, entry.user_id):
                raise AuthorizationError("You can only stop your own timers")
            if not entry.is_running:
                raise NotFoundError("No active timer found")
        else:
            entry = await self.running_entry(user_id)
            if entry is None:
                raise NotFoundError("No active timer found")

        end_time = self.clock()
        duration, clamped = compute_duration(entry.start_time, end_time)
        if clamped:
            logger.warning(
                f"Negative duration clamped to 0: entry={entry.id} "
                f"start={as_utc(entry.start_time).isoformat()} end={end_time.isoformat()}"
            )

        entry.end_time = end_time
        entry.duration = duration
        entry.duration_flagged = clamped
        if notes:
            entry.notes = notes

        with span("timer.stop", user_id=entry.user_id, entry_id=entry.id):
            activity_log.record_timer_stop(
                self.db, entry.task_id, user_id, entry.id, duration, clamped=clamped,
            )
            await self.db.commit()

        logger.info(f"Timer stopped: entry={entry.id} user={entry.user_id} duration={duration}s")
        return entry

    async def get_active_timer(self, user_id: str) -> Optional[ActiveTimer]:
        entry = await self.running_entry(user_id)
        if entry is None:
            return None
        elapsed, _ = compute_duration(entry.start_time, self.clock())
        return ActiveTimer(entry=entry, elapsed_seconds=elapsed)

    # --------------------------------------------------------
    # Manual entries & edits
    # --------------------------------------------------------

    async def create_manual_entry(
        self,
        user_id: str,
        role: UserRole,
        task_id: str,
        start_time: datetime,
        end_time: datetime,
        notes: Optional[str] = None,
        is_billable: bool = True,
    ) -> TimeEntry:
        if as_utc(end_time) <= as_utc(start_time):
            raise ValidationError(
                "End time must be after start time",
                errors={"endTime": ["End time must be after start time"]},
            )

        task = await self._get_task(task_id)
        if not access_policy.can_track_time_on(role, user_id, task.assignee_id):
            raise AuthorizationError("You do not have access to this task")

        duration, _ = compute_duration(start_time, end_time)
        entry = TimeEntry(
            task_id=task.id,
            user_id=user_id,
            start_time=as_utc(start_time),
            end_time=as_utc(end_time),
            duration=duration,
            notes=notes,
            is_billable=is_billable,
        )
        self.db.add(entry)
        await self.db.commit()
        return entry

    async def update_entry(
        self, user_id: str, role: UserRole, entry_id: str, changes: Dict[str, Any],
    ) -> TimeEntry:
        """Apply the given fields. A closed entry gets its duration recomputed."""
        entry = await self._get_entry(entry_id)
        if not access_policy.can_modify_time_entry(role, user_id, entry.user_id):
            raise AuthorizationError("You can only update your own time entries")

        start = as_utc(changes.get("start_time") or entry.start_time)
        end = as_utc(changes.get("end_time") or entry.end_time)
        closing = entry.is_running and end is not None

        if end is not None:
            if end <= start:
                raise ValidationError(
                    "End time must be after start time",
                    errors={"endTime": ["End time must be after start time"]},
                )
            entry.duration, entry.duration_flagged = compute_duration(start, end)

        entry.start_time = start
        entry.end_time = end
        if "notes" in changes:
            entry.notes = changes["notes"]
        if changes.get("is_billable") is not None:
            entry.is_billable = changes["is_billable"]
        if closing:
            activity_log.record_timer_stop(
                self.db, entry.task_id, user_id, entry.id, entry.duration,
                clamped=entry.duration_flagged,
            )

        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError(ACTIVE_TIMER_MESSAGE, code="TL-TIMER-001")
        if closing:
            logger.info(f"Timer closed by edit: entry={entry.id} by={user_id} duration={entry.duration}s")
        return entry

    async def delete_entry(self, user_id: str, role: UserRole, entry_id: str) -> None:
        entry = await self._get_entry(entry_id)
        if not access_policy.can_modify_time_entry(role, user_id, entry.user_id):
            raise AuthorizationError("You can only delete your own time entries")
        await self.db.delete(entry)
        await self.db.commit()
        logger.info(f"Time entry deleted: entry={entry_id} by={user_id}")

    # --------------------------------------------------------
    # Queries & reports
    # --------------------------------------------------------

    async def list_entries(
        self,
        user_id: str,
        role: UserRole,
        filters: Dict[str, Any],
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[TimeEntry], int]:
        stmt = select(TimeEntry)

        subject = filters.get("user_id")
        if not access_policy.is_admin_tier(role):
            subject = user_id
        if subject:
            stmt = stmt.where(TimeEntry.user_id == subject)
        if filters.get("task_id"):
            stmt = stmt.where(TimeEntry.task_id == filters["task_id"])
        if filters.get("project_id"):
            stmt = stmt.join(Task, Task.id == TimeEntry.task_id).where(
                Task.project_id == filters["project_id"]
            )
        if filters.get("start_date"):
            stmt = stmt.where(TimeEntry.start_time >= as_utc(filters["start_date"]))
        if filters.get("end_date"):
            stmt = stmt.where(TimeEntry.start_time <= as_utc(filters["end_date"]))
        if filters.get("is_billable") is not None:
            stmt = stmt.where(TimeEntry.is_billable == filters["is_billable"])

        total = (await self.db.execute(
            select(func.count()).select_from(stmt.subquery())
        )).scalar() or 0

        stmt = (
            stmt.options(selectinload(TimeEntry.task).selectinload(Task.project))
            .execution_options(populate_existing=True)
            .order_by(TimeEntry.start_time.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), total

    async def _sum_duration(self, user_id: str, since: Optional[datetime] = None) -> int:
        stmt = select(func.coalesce(func.sum(TimeEntry.duration), 0)).where(TimeEntry.user_id == user_id)
        if since is not None:
            stmt = stmt.where(TimeEntry.start_time >= since)
        return int((await self.db.execute(stmt)).scalar() or 0)

    async def user_time_stats(self, user_id: str) -> Dict[str, Any]:
        now = self.clock()
        total = await self._sum_duration(user_id)
        weekly = await self._sum_duration(user_id, start_of_week(now))
        monthly = await self._sum_duration(user_id, start_of_month(now))
        return {
            "totalSeconds": total,
            "weeklySeconds": weekly,
            "monthlySeconds": monthly,
            "totalHours": _hours(total),
            "weeklyHours": _hours(weekly),
            "monthlyHours": _hours(monthly),
        }

    async def project_time_report(self, project_id: str) -> Dict[str, Any]:
        project = (await self.db.execute(
            select(Project).where(Project.id == project_id)
        )).scalar_one_or_none()
        if not project:
            raise NotFoundError("Project not found")

        stmt = (
            select(TimeEntry, User, Task)
            .join(Task, Task.id == TimeEntry.task_id)
            .join(User, User.id == TimeEntry.user_id)
            .where(Task.project_id == project_id)
        )
        rows = (await self.db.execute(stmt)).all()

        by_user: Dict[str, Dict[str, Any]] = {}
        by_task: Dict[str, Dict[str, Any]] = {}
        total = 0
        for entry, user, task in rows:
            seconds = entry.duration or 0
            total += seconds

            u = by_user.setdefault(user.id, {
                "user": {"id": user.id, "firstName": user.first_name, "lastName": user.last_name},
                "totalSeconds": 0,
                "entries": 0,
            })
            u["totalSeconds"] += seconds
            u["entries"] += 1

            t = by_task.setdefault(task.id, {
                "task": {"id": task.id, "title": task.title},
                "totalSeconds": 0,
                "entries": 0,
            })
            t["totalSeconds"] += seconds
            t["entries"] += 1

        return {
            "projectId": project.id,
            "totalSeconds": total,
            "totalHours": _hours(total),
            "byUser": list(by_user.values()),
            "byTask": list(by_task.values()),
        }
