"""Input landing integration tests: imports, overrides, expenses and attendance."""

from datetime import date
from decimal import Decimal

import pytest

from payroll_recon.exceptions import InputsFrozenError, PeriodLockedError, ValidationError
from payroll_recon.models import AttendanceStatus, PeriodStatus, SourceMethod
from payroll_recon.repositories.period_repository import PeriodRepository
from payroll_recon.schemas import AttendanceMark, ExpenseTuple, InputTuple, ManualInputUpdate
from payroll_recon.services.input_service import InputService, dedupe_by_priority
from tests.conftest import create_period, create_user


def tuple_of(name, key, amount, priority=0, cell=None) -> InputTuple:
    return InputTuple(
        payroll_name=name,
        component_key=key,
        amount=Decimal(str(amount)),
        source_sheet="Payroll Feb",
        source_cell=cell,
        source_priority=priority,
    )


class TestInputSchemas:
    def test_normalizes_name_and_key(self):
        item = InputTuple(payroll_name="  Ali Raza ", component_key=" basic_salary", amount="100")
        assert item.payroll_name == "Ali Raza"
        assert item.component_key == "BASIC_SALARY"
        assert item.amount == Decimal("100")

    def test_rejects_blank_name(self):
        with pytest.raises(ValueError):
            InputTuple(payroll_name="   ", component_key="BONUS", amount="1")


class TestDedupeByPriority:
    def test_highest_priority_wins(self):
        chosen = dedupe_by_priority(
            [tuple_of("Ali", "BONUS", 100, priority=2), tuple_of("Ali", "BONUS", 200, priority=1)]
        )
        assert [c.amount for c in chosen] == [Decimal("100")]

    def test_later_wins_ties(self):
        chosen = dedupe_by_priority([tuple_of("Ali", "BONUS", 100), tuple_of("Ali", "BONUS", 200)])
        assert [c.amount for c in chosen] == [Decimal("200")]


class TestIngest:
    async def test_ingest_writes_rows_and_expenses(self, session):
        period = await create_period(session, 2026, 2)
        summary = await InputService(session).ingest(
            period.period_id,
            [
                tuple_of("Ali", "BASIC_SALARY", 50000, cell="C4"),
                tuple_of("Ali", "BONUS", 100),
                tuple_of("Ali", "BONUS", 250),
            ],
            expenses=[ExpenseTuple(payroll_name="Ali", category_key="taxi", amount=Decimal("700"))],
        )

        assert summary.received == 3
        assert summary.written == 2
        assert summary.duplicates_dropped == 1
        assert summary.expenses_written == 1
        repo = PeriodRepository(session)
        rows = {r.component_key: r for r in await repo.list_input_values(period.period_id)}
        assert rows["BONUS"].amount == Decimal("250")
        assert rows["BASIC_SALARY"].source_cell == "C4"
        assert rows["BASIC_SALARY"].source_method == SourceMethod.WORKBOOK.value
        expenses = await repo.list_expense_entries(period.period_id)
        assert [e.category_key for e in expenses] == ["TAXI"]

    async def test_ingest_never_replaces_overrides(self, session):
        period = await create_period(session, 2026, 2)
        service = InputService(session)
        await service.apply_manual_updates(
            period.period_id,
            [ManualInputUpdate(payroll_name="Ali", component_key="BONUS", amount=Decimal("999"))],
        )

        summary = await service.ingest(period.period_id, [tuple_of("Ali", "BONUS", 100)])

        assert summary.skipped_overrides == 1
        row = await PeriodRepository(session).get_input_value(period.period_id, "Ali", "BONUS")
        assert row.amount == Decimal("999")
        assert row.is_override is True

    async def test_edit_returns_calculated_period_to_draft(self, session):
        period = await create_period(session, 2026, 2, status=PeriodStatus.CALCULATED)
        await InputService(session).apply_manual_updates(
            period.period_id,
            [ManualInputUpdate(payroll_name="Ali", component_key="PAID", amount=Decimal("100"))],
        )
        assert period.status == PeriodStatus.DRAFT.value

    async def test_approved_period_rejects_inputs(self, session):
        period = await create_period(session, 2026, 2, status=PeriodStatus.APPROVED)
        with pytest.raises(InputsFrozenError):
            await InputService(session).ingest(period.period_id, [tuple_of("Ali", "BONUS", 1)])

    async def test_locked_period_rejects_expenses(self, session):
        period = await create_period(session, 2026, 2, status=PeriodStatus.LOCKED)
        with pytest.raises(PeriodLockedError):
            await InputService(session).add_expense(
                period.period_id,
                ExpenseTuple(payroll_name="Ali", category_key="TAXI", amount=Decimal("1")),
            )


class TestAttendance:
    async def test_record_and_update_attendance(self, session):
        user = await create_user(session, "Ali")
        period = await create_period(session, 2026, 2)
        service = InputService(session)

        day = date(2026, 2, 2)
        await service.record_attendance(
            period.period_id,
            [AttendanceMark(user_id=user.user_id, attendance_date=day, status=AttendanceStatus.ABSENT)],
        )
        count = await service.record_attendance(
            period.period_id,
            [AttendanceMark(user_id=user.user_id, attendance_date=day, status=AttendanceStatus.PRESENT)],
        )

        assert count == 1
        attendance = await PeriodRepository(session).load_attendance(period.period_id, [user.user_id])
        assert [(a.attendance_date, a.status) for a in attendance[user.user_id]] == [(day, "PRESENT")]

    async def test_date_outside_period_rejected(self, session):
        user = await create_user(session, "Ali")
        period = await create_period(session, 2026, 2)
        with pytest.raises(ValidationError):
            await InputService(session).record_attendance(
                period.period_id,
                [
                    AttendanceMark(
                        user_id=user.user_id,
                        attendance_date=date(2026, 3, 1),
                        status=AttendanceStatus.PRESENT,
                    )
                ],
            )
