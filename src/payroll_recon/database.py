"""Database connection, session management and per-period locking."""

from __future__ import annotations

import asyncio
import weakref
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncGenerator
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from payroll_recon.config import get_settings

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


def get_engine() -> AsyncEngine:
    """Create async database engine."""
    settings = get_settings()
    return create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


# Global engine and session factory
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build a session factory with the engine-wide session options."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def init_db() -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Initialize database engine and session factory."""
    global _engine, _session_factory
    if _engine is None:
        _engine = get_engine()
        _session_factory = make_session_factory(_engine)
    return _engine, _session_factory


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables for the ORM metadata."""
    from payroll_recon.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get a database session that commits on success and rolls back on error."""
    _, factory = init_db()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def acquire_period_xact_lock(session: AsyncSession, period_id: UUID) -> None:
    """Take a transaction-scoped advisory lock for a period.

    Only PostgreSQL has advisory locks; other dialects rely on the in-process
    registry below. The lock is released automatically at commit/rollback.
    """
    if session.bind.dialect.name != "postgresql":
        return
    await session.execute(
        text("SELECT pg_advisory_xact_lock(hashtext(:period_id))"),
        {"period_id": str(period_id)},
    )


class PeriodLockRegistry:
    """In-process registry of asyncio locks, one per period.

    Entries are weak: a lock is dropped once no holder or waiter references it.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[UUID, asyncio.Lock] = weakref.WeakValueDictionary()

    def lock_for(self, period_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(period_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[period_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, period_id: UUID) -> AsyncGenerator[None, None]:
        async with self.lock_for(period_id):
            yield


period_locks = PeriodLockRegistry()
