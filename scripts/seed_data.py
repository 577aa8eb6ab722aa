#!/usr/bin/env python3
"""
Tracklane — Demo Data Seeder
Creates one user per role, a few client projects with milestones, tasks spread
across the workflow (including some waiting for QC review) and a history of
completed time entries. Used for local development and demos.

Usage:
    python scripts/seed_data.py
    python scripts/seed_data.py --projects 5 --tasks 12 --days 30
    DATABASE_URL=postgresql+asyncpg://... python scripts/seed_data.py --seed 7
"""

import asyncio
import random
import argparse
from datetime import timedelta

from sqlalchemy import select

from auth import AuthService
from database import init_db, close_db, get_db_context
from models import (
    Milestone, Project, ReviewStatus, Task, TaskPriority, TaskStatus,
    TimeEntry, User, UserRole, utcnow,
)


# ── Configuration ───────────────────────────────────────────

DEMO_PASSWORD = "Tracklane123!"

DEMO_USERS = [
    ("admin@tracklane.dev", "Alex", "Chen", UserRole.ADMIN),
    ("pm@tracklane.dev", "Jordan", "Patel", UserRole.PROJECT_MANAGER),
    ("qc@tracklane.dev", "Quinn", "Santos", UserRole.QC),
    ("dev1@tracklane.dev", "Taylor", "Kim", UserRole.DEVELOPER),
    ("dev2@tracklane.dev", "Morgan", "Okafor", UserRole.DEVELOPER),
    ("design@tracklane.dev", "Riley", "Larsson", UserRole.DESIGNER),
]

PROJECT_NAMES = ["Website Revamp", "Mobile App", "Billing Portal", "Data Migration", "Marketing Site"]
TASK_TITLES = [
    "Set up CI pipeline", "Design login screen", "Implement password reset", "Write API docs",
    "Add search endpoint", "Fix timezone bug", "Build settings page", "Optimise image loading",
    "Add audit export", "Integrate payment provider", "Accessibility pass", "Load test checkout",
]
WORKFLOW = [TaskStatus.TODO, TaskStatus.IN_PROGRESS, TaskStatus.IN_REVIEW, TaskStatus.COMPLETED]


# ── Seeding ─────────────────────────────────────────────────

async def seed_users(db) -> dict:
    users = {}
    for email, first, last, role in DEMO_USERS:
        user = User(
            email=email, first_name=first, last_name=last, role=role,
            password_hash=AuthService.hash_password(DEMO_PASSWORD),
        )
        db.add(user)
        users[role] = users.get(role, []) + [user]
    await db.flush()
    return users


def seed_time_entries(db, task: Task, user: User, days: int) -> int:
    now = utcnow()
    count = 0
    for _ in range(random.randint(1, 4)):
        start = (now - timedelta(days=random.randint(1, days))).replace(
            hour=random.randint(8, 15), minute=random.choice((0, 15, 30, 45)), second=0, microsecond=0,
        )
        duration = random.randint(2, 16) * 15 * 60
        db.add(TimeEntry(
            task_id=task.id, user_id=user.id,
            start_time=start, end_time=start + timedelta(seconds=duration), duration=duration,
            notes=f"Worked on {task.title.lower()}",
            is_billable=random.random() > 0.15,
        ))
        count += 1
    return count


async def seed(projects: int, tasks_per_project: int, days: int) -> dict:
    counts = {"users": 0, "projects": 0, "milestones": 0, "tasks": 0, "time_entries": 0}
    async with get_db_context() as db:
        existing = (await db.execute(select(User).where(User.email == DEMO_USERS[0][0]))).scalar_one_or_none()
        if existing:
            return counts

        users = await seed_users(db)
        counts["users"] = len(DEMO_USERS)
        admin = users[UserRole.ADMIN][0]
        qc = users[UserRole.QC][0]
        workers = users[UserRole.DEVELOPER] + users[UserRole.DESIGNER]

        for name in PROJECT_NAMES[:projects]:
            project = Project(name=name, description=f"Client engagement: {name}", created_by_id=admin.id)
            db.add(project)
            await db.flush()
            counts["projects"] += 1

            milestone = Milestone(
                project_id=project.id, title="Phase 1",
                amount=random.choice((1500, 2500, 4000)),
                due_date=utcnow() + timedelta(days=random.randint(7, 60)),
            )
            db.add(milestone)
            await db.flush()
            counts["milestones"] += 1

            for title in random.sample(TASK_TITLES, min(tasks_per_project, len(TASK_TITLES))):
                assignee = random.choice(workers)
                status = random.choice(WORKFLOW)
                task = Task(
                    project_id=project.id, milestone_id=milestone.id,
                    assignee_id=assignee.id, created_by_id=admin.id,
                    title=title, status=status,
                    priority=random.choice(list(TaskPriority)),
                    estimated_hours=random.choice((2, 4, 8, 16)),
                )
                if status == TaskStatus.IN_REVIEW:
                    task.review_status = ReviewStatus.PENDING
                elif status == TaskStatus.COMPLETED:
                    task.review_status = ReviewStatus.APPROVED
                    task.reviewed_by_id = qc.id
                    task.reviewed_at = task.completed_at = utcnow()
                db.add(task)
                await db.flush()
                counts["tasks"] += 1

                if status != TaskStatus.TODO:
                    counts["time_entries"] += seed_time_entries(db, task, assignee, days)
    return counts


# ── CLI ─────────────────────────────────────────────────────

async def run(args) -> dict:
    await init_db()
    try:
        return await seed(args.projects, args.tasks, args.days)
    finally:
        await close_db()


def main():
    parser = argparse.ArgumentParser(description="Tracklane Demo Data Seeder")
    parser.add_argument("--projects", type=int, default=3, help="Number of projects")
    parser.add_argument("--tasks", type=int, default=8, help="Tasks per project")
    parser.add_argument("--days", type=int, default=21, help="Spread time entries over this many past days")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    args = parser.parse_args()

    random.seed(args.seed)
    counts = asyncio.run(run(args))

    if not any(counts.values()):
        print("Demo data already present, nothing to do")
        return
    print("✅ Demo data seeded")
    for name, count in counts.items():
        print(f"   {name.replace('_', ' ').title()}: {count}")
    print(f"   Login with any demo email and password {DEMO_PASSWORD}")


if __name__ == "__main__":
    main()
