"""Pytest fixtures for payroll reconciliation tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator, Iterable
from uuid import UUID, uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from payroll_recon.calculators.types import InputRow, PeriodSnapshot
from payroll_recon.database import PeriodLockRegistry, make_session_factory
from payroll_recon.models import (
    Base,
    PayrollIdentityMapping,
    PayrollInputValue,
    PayrollPeriod,
    IdentityStatus,
    PeriodStatus,
    SourceMethod,
    User,
)
from payroll_recon.normalizers import month_bounds, normalize_payroll_name, to_period_key

# In-memory SQLite shared across sessions through a single static connection.
# Advisory locks are PostgreSQL-only; the in-process lock registry covers tests.
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def engine():
    """Create a fresh test database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for arranging and asserting; services under test open their own."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def lock_registry() -> PeriodLockRegistry:
    return PeriodLockRegistry()


# ===== Builders =====


async def create_user(session: AsyncSession, name: str, email: str | None = None) -> User:
    user = User(user_id=uuid4(), name=name, email=email, is_active=True)
    session.add(user)
    await session.flush()
    return user


async def create_period(
    session: AsyncSession,
    year: int,
    month: int,
    status: PeriodStatus = PeriodStatus.DRAFT,
) -> PayrollPeriod:
    start, end = month_bounds(year, month)
    period = PayrollPeriod(
        period_id=uuid4(),
        label=f"Payroll {to_period_key(start)}",
        period_start=start,
        period_end=end,
        status=status.value,
    )
    session.add(period)
    await session.flush()
    return period


async def add_inputs(
    session: AsyncSession,
    period_id: UUID,
    payroll_name: str,
    amounts: dict[str, Decimal | int | str],
    is_override: bool = False,
    user_id: UUID | None = None,
) -> None:
    session.add_all(
        PayrollInputValue(
            period_id=period_id,
            payroll_name=payroll_name,
            component_key=key,
            amount=Decimal(str(amount)),
            user_id=user_id,
            source_method=(SourceMethod.MANUAL if is_override else SourceMethod.WORKBOOK).value,
            is_override=is_override,
        )
        for key, amount in amounts.items()
    )
    await session.flush()


async def map_identity(session: AsyncSession, payroll_name: str, user: User) -> PayrollIdentityMapping:
    mapping = PayrollIdentityMapping(
        normalized_payroll_name=normalize_payroll_name(payroll_name),
        display_payroll_name=payroll_name,
        user_id=user.user_id,
        status=IdentityStatus.MANUAL_MATCHED.value,
    )
    session.add(mapping)
    await session.flush()
    return mapping


def make_snapshot(
    rows: Iterable[InputRow],
    period_start: date = date(2026, 2, 1),
    **kwargs,
) -> PeriodSnapshot:
    """Build an engine snapshot for a calendar month without touching the database."""
    start, end = month_bounds(period_start.year, period_start.month)
    return PeriodSnapshot(
        period_id=kwargs.pop("period_id", uuid4()),
        period_key=to_period_key(start),
        period_start=start,
        period_end=end,
        input_rows=list(rows),
        **kwargs,
    )


def rows_for(
    payroll_name: str,
    amounts: dict[str, Decimal | int | str],
    is_override: bool = False,
    user_id: UUID | None = None,
) -> list[InputRow]:
    return [
        InputRow(
            payroll_name=payroll_name,
            component_key=key,
            amount=Decimal(str(amount)),
            user_id=user_id,
            is_override=is_override,
        )
        for key, amount in amounts.items()
    ]
