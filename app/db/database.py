"""
Database Connection and Session Management
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from app.core.config import settings

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False
)

Base = declarative_base()


async def get_db() -> AsyncSession:
    """Dependency for getting database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create missing tables"""
    import app.db.models  # noqa: F401  registers all tables on Base.metadata

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def task_session_factory() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """
    Session factory bound to a fresh engine, for Celery tasks.

    Each Celery task runs its tick on a new event loop; reusing the
    module-level engine there fails with "attached to a different loop".
    Workers open one session per claimed item, so they get the factory
    rather than a single session.
    """
    task_engine = create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10
    )
    try:
        yield async_sessionmaker(
            bind=task_engine,
            class_=AsyncSession,
            expire_on_commit=False
        )
    finally:
        await task_engine.dispose()
