"""Landing upstream input tuples, manual edits, expenses and attendance."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_recon.exceptions import ValidationError
from payroll_recon.models import (
    PayrollAttendanceEntry,
    PayrollExpenseEntry,
    PayrollPeriod,
    PeriodStatus,
    SourceMethod,
)
from payroll_recon.repositories.period_repository import PeriodRepository
from payroll_recon.schemas import AttendanceMark, ExpenseTuple, InputTuple, ManualInputUpdate
from payroll_recon.services.state_machine import PeriodStateMachine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestSummary:
    received: int
    written: int
    skipped_overrides: int
    duplicates_dropped: int
    expenses_written: int


def dedupe_by_priority(tuples: Iterable[InputTuple]) -> list[InputTuple]:
    """Keep one tuple per (payroll name, component key).

    The highest ``source_priority`` wins; on a tie the later tuple wins.
    """
    chosen: dict[tuple[str, str], InputTuple] = {}
    for item in tuples:
        key = (item.payroll_name, item.component_key)
        current = chosen.get(key)
        if current is None or item.source_priority >= current.source_priority:
            chosen[key] = item
    return [chosen[key] for key in sorted(chosen)]


class InputService:
    """Writes period inputs while enforcing status gating.

    Operations:
    - ingest: land parser output as non-override rows
    - apply_manual_updates: human overrides (returns a CALCULATED period to DRAFT)
    - record_attendance: daily attendance used for travel proration
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = PeriodRepository(session)

    async def _mutable_period(self, period_id: UUID, action: str) -> PayrollPeriod:
        period = await self.repo.require_period(period_id)
        PeriodStateMachine.ensure_inputs_mutable(period, action)
        return period

    def _mark_inputs_changed(self, period: PayrollPeriod) -> None:
        if period.status == PeriodStatus.CALCULATED:
            PeriodStateMachine.validate_transition(period.status, PeriodStatus.DRAFT)
            period.status = PeriodStatus.DRAFT.value

    async def ingest(
        self,
        period_id: UUID,
        tuples: Iterable[InputTuple],
        expenses: Iterable[ExpenseTuple] = (),
        source_method: SourceMethod = SourceMethod.WORKBOOK,
    ) -> IngestSummary:
        """Upsert parser tuples as non-override input rows.

        Existing override rows are never replaced by imported values.
        Expense tuples replace the period's itemized expenses when given.
        """
        period = await self._mutable_period(period_id, "import inputs")
        received = list(tuples)
        deduped = dedupe_by_priority(received)

        written = skipped = 0
        for item in deduped:
            existing = await self.repo.get_input_value(
                period_id, item.payroll_name, item.component_key
            )
            if existing is not None and existing.is_override:
                skipped += 1
                continue
            await self.repo.upsert_input_value(
                period_id,
                item.payroll_name,
                item.component_key,
                item.amount,
                source_method=source_method.value,
                is_override=False,
                source_sheet=item.source_sheet,
                source_cell=item.source_cell,
                provenance={"sourcePriority": item.source_priority},
            )
            written += 1

        expense_list = list(expenses)
        if expense_list:
            await self.repo.delete_expenses(period_id)
            self.session.add_all(
                PayrollExpenseEntry(
                    period_id=period_id,
                    payroll_name=e.payroll_name.strip(),
                    category_key=e.category_key,
                    description=e.description,
                    amount=e.amount,
                    sheet_name=e.sheet_name,
                    row_ref=e.row_ref,
                )
                for e in expense_list
            )

        self._mark_inputs_changed(period)
        await self.session.flush()

        summary = IngestSummary(
            received=len(received),
            written=written,
            skipped_overrides=skipped,
            duplicates_dropped=len(received) - len(deduped),
            expenses_written=len(expense_list),
        )
        logger.info("Ingested inputs for period %s: %s", period_id, summary)
        return summary

    async def apply_manual_updates(
        self,
        period_id: UUID,
        updates: Iterable[ManualInputUpdate],
        actor_id: UUID | None = None,
    ) -> int:
        """Write human edits as override rows; they win over defaults and derived values."""
        period = await self._mutable_period(period_id, "edit inputs")
        count = 0
        for update in updates:
            await self.repo.upsert_input_value(
                period_id,
                update.payroll_name.strip(),
                update.component_key,
                update.amount,
                source_method=SourceMethod.MANUAL.value,
                is_override=True,
                user_id=update.user_id,
                note=update.note,
                provenance={"editedBy": str(actor_id) if actor_id else None},
            )
            count += 1
        if count:
            self._mark_inputs_changed(period)
            await self.session.flush()
        return count

    async def add_expense(
        self,
        period_id: UUID,
        expense: ExpenseTuple,
        actor_id: UUID | None = None,
    ) -> PayrollExpenseEntry:
        period = await self._mutable_period(period_id, "add expenses")
        entry = PayrollExpenseEntry(
            period_id=period_id,
            payroll_name=expense.payroll_name.strip(),
            category_key=expense.category_key,
            description=expense.description,
            amount=expense.amount,
            sheet_name=expense.sheet_name,
            row_ref=expense.row_ref,
            entered_by_id=actor_id,
        )
        self.session.add(entry)
        self._mark_inputs_changed(period)
        await self.session.flush()
        return entry

    async def record_attendance(self, period_id: UUID, marks: Iterable[AttendanceMark]) -> int:
        """Upsert attendance marks; dates outside the period are rejected."""
        period = await self._mutable_period(period_id, "record attendance")
        count = 0
        for mark in marks:
            if not period.period_start <= mark.attendance_date <= period.period_end:
                raise ValidationError(
                    f"Attendance date {mark.attendance_date} is outside period {period.label}"
                )
            result = await self.session.execute(
                select(PayrollAttendanceEntry).where(
                    PayrollAttendanceEntry.period_id == period_id,
                    PayrollAttendanceEntry.user_id == mark.user_id,
                    PayrollAttendanceEntry.attendance_date == mark.attendance_date,
                )
            )
            entry = result.scalar_one_or_none()
            if entry is None:
                entry = PayrollAttendanceEntry(
                    period_id=period_id,
                    user_id=mark.user_id,
                    attendance_date=mark.attendance_date,
                )
                self.session.add(entry)
            entry.status = mark.status.value
            count += 1
        if count:
            self._mark_inputs_changed(period)
            await self.session.flush()
        return count
