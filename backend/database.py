# database.py - Async database setup
import os
import logging
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from contextlib import asynccontextmanager

logger = logging.getLogger("tracklane.db")

# Database configuration
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./tracklane.db")


def _engine_kwargs(url: str) -> dict:
    kwargs = {
        "echo": os.getenv("SQL_ECHO", "false").lower() == "true",
        "future": True,
        "pool_pre_ping": True,
    }
    # SQLite has no server-side pool to size
    if not url.startswith("sqlite"):
        kwargs.update(pool_size=20, max_overflow=0, pool_recycle=3600)
    return kwargs


engine = create_async_engine(DATABASE_URL, **_engine_kwargs(DATABASE_URL))

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
    autocommit=False,
)


async def get_db_session():
    """Dependency for getting database session (FastAPI Depends)"""
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db():
    """Create tables that do not exist yet. Alembic owns schema changes."""
    from models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database initialized")


async def close_db():
    """Close database connection pool"""
    await engine.dispose()


@asynccontextmanager
async def get_db_context():
    """Context manager for database operations outside of FastAPI request cycle"""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
