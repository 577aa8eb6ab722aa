# review_workflow.py — QC review decisions on tasks
# The review status / task status coupling lives in one table. A decision
# is only legal from PENDING; anything else raises InvalidTransition when
# the ReviewTransition is built, before any row is touched.

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

import access_policy
import activity_log
from errors import AuthorizationError, InvalidTransition, NotFoundError
from models import (
    Notification, NotificationType, ReviewStatus, Task, TaskStatus, UserRole, utcnow,
)
from telemetry import span

logger = logging.getLogger("tracklane.review")

# review decision -> resulting task status, keyed by the current review status
TRANSITIONS = {
    ReviewStatus.PENDING: {
        ReviewStatus.APPROVED: TaskStatus.COMPLETED,
        ReviewStatus.REJECTED: TaskStatus.IN_PROGRESS,
        ReviewStatus.NEEDS_CHANGES: TaskStatus.IN_PROGRESS,
    },
}

REVIEWABLE_STATUSES = (TaskStatus.IN_REVIEW, TaskStatus.COMPLETED)

NOTIFICATION_MESSAGES = {
    ReviewStatus.PENDING: "is pending review",
    ReviewStatus.APPROVED: "has been approved",
    ReviewStatus.REJECTED: "has been rejected",
    ReviewStatus.NEEDS_CHANGES: "needs changes",
}


def current_review_status(task: Task) -> Optional[ReviewStatus]:
    """The review status a decision starts from.

    An unset column counts as PENDING while the task is IN_REVIEW or
    COMPLETED; for any other task status there is nothing to review.
    """
    if task.review_status is not None:
        return ReviewStatus(task.review_status)
    if task.status in REVIEWABLE_STATUSES:
        return ReviewStatus.PENDING
    return None


@dataclass(frozen=True)
class ReviewTransition:
    from_status: Optional[ReviewStatus]
    to_status: ReviewStatus
    task_status: TaskStatus

    @classmethod
    def build(cls, from_status: Optional[ReviewStatus], to_status: ReviewStatus) -> "ReviewTransition":
        to_status = ReviewStatus(to_status)
        allowed = TRANSITIONS.get(from_status, {})
        if to_status not in allowed:
            current = from_status.value if from_status else "none"
            raise InvalidTransition(
                f"Cannot change review status from {current} to {to_status.value}",
                errors={"reviewStatus": [f"Transition {current} -> {to_status.value} is not allowed"]},
            )
        return cls(from_status=from_status, to_status=to_status, task_status=allowed[to_status])


def notification_message(title: str, review_status: ReviewStatus, has_bugs: bool) -> str:
    message = f'Task "{title}" {NOTIFICATION_MESSAGES[review_status]}'
    if has_bugs:
        message += " (bugs found)"
    return message


class ReviewWorkflow:
    def __init__(self, db: AsyncSession, clock: Callable = utcnow):
        self.db = db
        self.clock = clock

    async def _get_task(self, task_id: str) -> Task:
        result = await self.db.execute(select(Task).where(Task.id == task_id))
        task = result.scalar_one_or_none()
        if not task:
            raise NotFoundError("Task not found")
        return task

    async def review_task(
        self,
        reviewer_id: str,
        role: UserRole,
        task_id: str,
        review_status: ReviewStatus,
        review_comment: Optional[str] = None,
        has_bugs: bool = False,
    ) -> Task:
        if not access_policy.can_review_task(role):
            raise AuthorizationError("Only QC or admin users can review tasks")

        task = await self._get_task(task_id)
        if task.status not in REVIEWABLE_STATUSES:
            raise InvalidTransition("Task must be in review or completed to be reviewed")

        transition = ReviewTransition.build(current_review_status(task), review_status)

        now = self.clock()
        task.review_status = transition.to_status
        task.review_comment = review_comment
        task.reviewed_by_id = reviewer_id
        task.reviewed_at = now
        task.has_bugs = has_bugs
        if task.status != transition.task_status:
            task.status = transition.task_status
            task.completed_at = now if transition.task_status == TaskStatus.COMPLETED else None

        activity_log.record(
            self.db, task.id, reviewer_id, activity_log.action_for_field("review_status"),
            field="review_status",
            old_value=transition.from_status,
            new_value=transition.to_status,
            metadata={"comment": review_comment, "has_bugs": has_bugs},
        )

        if task.assignee_id:
            self.db.add(Notification(
                user_id=task.assignee_id,
                title="Task Reviewed",
                message=notification_message(task.title, transition.to_status, has_bugs),
                type=NotificationType.TASK_REVIEWED,
                data={"task_id": task.id, "review_status": transition.to_status.value},
            ))

        with span("task.review", task_id=task.id, decision=transition.to_status.value):
            await self.db.commit()
        logger.info(
            f"Task reviewed: task={task.id} by={reviewer_id} "
            f"{transition.from_status.value} -> {transition.to_status.value}"
        )
        return task

    async def get_tasks_for_review(self, project_id: Optional[str] = None) -> List[Task]:
        """IN_REVIEW tasks whose round is still open.

        COMPLETED tasks that were never reviewed are not queued; QC can still
        review them by id.
        """
        stmt = (
            select(Task)
            .where(
                Task.status == TaskStatus.IN_REVIEW,
                or_(Task.review_status.is_(None), Task.review_status == ReviewStatus.PENDING),
            )
            .options(
                selectinload(Task.project),
                selectinload(Task.assignee),
                selectinload(Task.reviewed_by),
            )
            .order_by(Task.updated_at.desc())
        )
        if project_id:
            stmt = stmt.where(Task.project_id == project_id)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())


def resubmit_for_review(db: AsyncSession, task: Task, user_id: str) -> None:
    """Reset the review round when a task goes back to IN_REVIEW.

    Adds the activity row and leaves the commit to the caller.
    """
    if task.review_status in (None, ReviewStatus.PENDING):
        return
    activity_log.record_change(db, task.id, user_id, "review_status", task.review_status, ReviewStatus.PENDING)
    task.review_status = ReviewStatus.PENDING
    task.review_comment = None
    task.has_bugs = False
