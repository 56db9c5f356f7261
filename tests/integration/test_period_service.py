"""Period lifecycle integration tests: setup, approval, carry-forward and lock."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from payroll_recon.exceptions import InputsFrozenError, PayrollError, PeriodLockedError, ValidationError
from payroll_recon.models import (
    PayrollApprovalEvent,
    PayrollExpenseEntry,
    PeriodSourceType,
    PeriodStatus,
    SourceMethod,
)
from payroll_recon.repositories.period_repository import PeriodRepository
from payroll_recon.services.period_service import PeriodService
from payroll_recon.services.recalculation_service import RecalculationService
from payroll_recon.services.state_machine import InvalidTransitionError
from tests.conftest import add_inputs, create_period, create_user


async def calculated_period(session, session_factory, lock_registry, paid: int):
    period = await create_period(session, 2026, 2)
    await add_inputs(
        session, period.period_id, "Ali", {"BASIC_SALARY": 50000, "INCOME_TAX": 0, "PAID": paid}
    )
    await session.commit()
    await RecalculationService(session_factory, locks=lock_registry).recalculate_period(
        period.period_id
    )
    await session.refresh(period)
    return period


class TestCreatePeriod:
    async def test_create_monthly_period(self, session):
        period = await PeriodService(session).create_period(2026, 2)
        assert period.period_start == date(2026, 2, 1)
        assert period.period_end == date(2026, 2, 28)
        assert period.label == "Payroll 02/2026"
        assert period.status == PeriodStatus.DRAFT.value

    async def test_duplicate_month_rejected(self, session):
        service = PeriodService(session)
        await service.create_period(2026, 2)
        with pytest.raises(ValidationError):
            await service.create_period(2026, 2, label="Again")

    async def test_invalid_month(self, session):
        with pytest.raises(ValidationError):
            await PeriodService(session).create_period(2026, 13)


class TestApproval:
    async def test_approve_clean_period(self, session, session_factory, lock_registry):
        approver = await create_user(session, "Payroll Admin")
        period = await calculated_period(session, session_factory, lock_registry, paid=50000)

        approved = await PeriodService(session).approve_period(period.period_id, actor_id=approver.user_id)

        assert approved.status == PeriodStatus.APPROVED.value
        assert approved.approved_by_id == approver.user_id
        assert approved.approved_at is not None
        events = (await session.execute(select(PayrollApprovalEvent))).scalars().all()
        assert [(e.from_status, e.to_status) for e in events] == [("CALCULATED", "APPROVED")]

    async def test_critical_mismatch_requires_comment(self, session, session_factory, lock_registry):
        period = await calculated_period(session, session_factory, lock_registry, paid=40000)
        service = PeriodService(session)

        with pytest.raises(InvalidTransitionError):
            await service.approve_period(period.period_id, comment="   ")

        approved = await service.approve_period(period.period_id, comment="Paid the rest in cash")
        assert approved.status == PeriodStatus.APPROVED.value

    async def test_draft_cannot_be_approved(self, session):
        period = await create_period(session, 2026, 2)
        with pytest.raises(InvalidTransitionError):
            await PeriodService(session).approve_period(period.period_id)


class TestLock:
    async def test_lock_approved_period(self, session):
        period = await create_period(session, 2026, 2, status=PeriodStatus.APPROVED)
        locked = await PeriodService(session).lock_period(period.period_id, comment="closed")
        assert locked.status == PeriodStatus.LOCKED.value

    async def test_lock_twice(self, session):
        period = await create_period(session, 2026, 2, status=PeriodStatus.LOCKED)
        with pytest.raises(PeriodLockedError):
            await PeriodService(session).lock_period(period.period_id)

    async def test_draft_cannot_be_locked(self, session):
        period = await create_period(session, 2026, 2)
        with pytest.raises(InvalidTransitionError):
            await PeriodService(session).lock_period(period.period_id)


class TestCarryForward:
    async def test_copies_inputs_and_expenses(self, session):
        base = await create_period(session, 2026, 1, status=PeriodStatus.LOCKED)
        target = await create_period(session, 2026, 2)
        await add_inputs(session, base.period_id, "Ali", {"BASIC_SALARY": 50000, "BONUS": 1000})
        await add_inputs(session, target.period_id, "Stale", {"BASIC_SALARY": 1})
        session.add(
            PayrollExpenseEntry(
                period_id=base.period_id,
                payroll_name="Ali",
                category_key="TAXI",
                amount=Decimal("750"),
            )
        )
        await session.flush()

        result = await PeriodService(session).carry_forward(base.period_id, target.period_id)

        assert result.carried_input_count == 2
        assert result.carried_expense_count == 1
        repo = PeriodRepository(session)
        inputs = await repo.list_input_values(target.period_id)
        assert [(i.payroll_name, i.component_key) for i in inputs] == [
            ("Ali", "BASIC_SALARY"),
            ("Ali", "BONUS"),
        ]
        assert all(i.source_method == SourceMethod.CARRY_FORWARD.value for i in inputs)
        assert len(await repo.list_expense_entries(target.period_id)) == 1
        assert target.status == PeriodStatus.DRAFT.value
        assert target.source_type == PeriodSourceType.CARRY_FORWARD.value
        assert target.summary_json["carriedInputCount"] == 2

    async def test_defaults_to_previous_period(self, session):
        await create_period(session, 2025, 12, status=PeriodStatus.LOCKED)
        january = await create_period(session, 2026, 1, status=PeriodStatus.LOCKED)
        target = await create_period(session, 2026, 2)
        await add_inputs(session, january.period_id, "Ali", {"BASIC_SALARY": 50000})
        await session.flush()

        result = await PeriodService(session).carry_forward(None, target.period_id)

        assert result.base_period_id == january.period_id
        assert result.carried_input_count == 1
        assert target.summary_json["carriedForwardFromPeriodId"] == str(january.period_id)

    async def test_no_previous_period(self, session):
        target = await create_period(session, 2026, 2)
        with pytest.raises(ValidationError):
            await PeriodService(session).carry_forward(None, target.period_id)

    async def test_same_period_rejected(self, session):
        period = await create_period(session, 2026, 2)
        with pytest.raises(ValidationError):
            await PeriodService(session).carry_forward(period.period_id, period.period_id)

    async def test_frozen_target_rejected(self, session):
        base = await create_period(session, 2026, 1)
        target = await create_period(session, 2026, 2, status=PeriodStatus.APPROVED)
        with pytest.raises(InputsFrozenError):
            await PeriodService(session).carry_forward(base.period_id, target.period_id)


class TestDeletePeriod:
    async def test_delete_uncomputed_period(self, session):
        period = await create_period(session, 2026, 2)
        await add_inputs(session, period.period_id, "Ali", {"BASIC_SALARY": 1})
        await PeriodService(session).delete_period(period.period_id)
        assert await PeriodRepository(session).get_period(period.period_id) is None

    async def test_computed_period_cannot_be_deleted(self, session, session_factory, lock_registry):
        period = await calculated_period(session, session_factory, lock_registry, paid=50000)
        with pytest.raises(PayrollError):
            await PeriodService(session).delete_period(period.period_id)
