"""
Database engine and sessions.

The web app shares one engine. Celery tasks get a short-lived engine of their
own because every task runs on a fresh event loop (see workers/tasks.py).
"""
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from sms_bot.core.config import settings

Base = declarative_base()


def _make_engine(**pool_options) -> AsyncEngine:
    if settings.DATABASE_URL.startswith("sqlite"):
        # aiosqlite uses a static pool; sizing options do not apply
        pool_options = {}
    return create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        pool_pre_ping=True,
        **pool_options,
    )


def _session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Objects stay readable after commit; the bot reads session rows right after writing them
    return async_sessionmaker(bind=bind, class_=AsyncSession, expire_on_commit=False)


engine = _make_engine()
AsyncSessionLocal = _session_factory(engine)


async def init_models() -> None:
    """Create missing tables (run at application startup)"""
    # Registers every model on Base.metadata
    import sms_bot.db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request"""
    async with AsyncSessionLocal() as session:
        yield session


@asynccontextmanager
async def get_task_session() -> AsyncGenerator[AsyncSession, None]:
    """Session on a throwaway engine bound to the current Celery task's loop"""
    task_engine = _make_engine(pool_size=2, max_overflow=3)
    try:
        async with _session_factory(task_engine)() as session:
            yield session
    finally:
        await task_engine.dispose()
