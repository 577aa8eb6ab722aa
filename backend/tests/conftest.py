# tests/conftest.py — Shared test fixtures
import os
import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ.pop("ANTHROPIC_API_KEY", None)

from models import Base, User, Project, Task, TaskStatus, UserRole
from auth import AuthService
from database import get_db_session
from main import app


class FakeClock:
    """Deterministic clock for TimerEngine / ReviewWorkflow."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def set(self, hour: int, minute: int = 0, second: int = 0) -> None:
        self.now = self.now.replace(hour=hour, minute=minute, second=second)

    def advance(self, seconds: int) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 4, 10, 0, 0, tzinfo=timezone.utc))


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(session_factory):
    """HTTP test client with overridden DB dependency"""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _make_user(db_session, email: str, role: UserRole, first_name: str) -> User:
    user = User(
        id=str(uuid.uuid4()),
        email=email,
        first_name=first_name,
        last_name="Tester",
        password_hash=AuthService.hash_password("Password123!"),
        role=role,
        is_active=True,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def admin_user(db_session):
    return await _make_user(db_session, "admin@tracklane.dev", UserRole.ADMIN, "Ada")


@pytest_asyncio.fixture
async def pm_user(db_session):
    return await _make_user(db_session, "pm@tracklane.dev", UserRole.PROJECT_MANAGER, "Pat")


@pytest_asyncio.fixture
async def qc_user(db_session):
    return await _make_user(db_session, "qc@tracklane.dev", UserRole.QC, "Quinn")


@pytest_asyncio.fixture
async def developer(db_session):
    return await _make_user(db_session, "dev@tracklane.dev", UserRole.DEVELOPER, "Dana")


@pytest_asyncio.fixture
async def other_developer(db_session):
    return await _make_user(db_session, "dev2@tracklane.dev", UserRole.DEVELOPER, "Devon")


@pytest_asyncio.fixture
async def project(db_session, admin_user):
    p = Project(name="Website Revamp", description="Client site", created_by_id=admin_user.id)
    db_session.add(p)
    await db_session.commit()
    await db_session.refresh(p)
    return p


async def make_task(db_session, project, creator, assignee=None, title="Task", status=TaskStatus.TODO,
                    review_status=None) -> Task:
    task = Task(
        project_id=project.id,
        created_by_id=creator.id,
        assignee_id=assignee.id if assignee else None,
        title=title,
        status=status,
        review_status=review_status,
    )
    db_session.add(task)
    await db_session.commit()
    await db_session.refresh(task)
    return task


@pytest_asyncio.fixture
async def task_t(db_session, project, admin_user, developer):
    return await make_task(db_session, project, admin_user, developer, title="Task T")


@pytest_asyncio.fixture
async def task_u(db_session, project, admin_user, developer):
    return await make_task(db_session, project, admin_user, developer, title="Task U")


@pytest_asyncio.fixture
async def review_task(db_session, project, admin_user, developer):
    return await make_task(db_session, project, admin_user, developer, title="Needs QC",
                           status=TaskStatus.IN_REVIEW)


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token_data = {
        "sub": user.id,
        "email": user.email,
        "role": user.role.value if isinstance(user.role, UserRole) else user.role,
    }
    token = AuthService.create_access_token(token_data)
    return {"Authorization": f"Bearer {token}"}
