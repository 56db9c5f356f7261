"""Loading and persistence for payroll periods and their master data."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from payroll_recon.calculators.types import (
    AttendanceRecord,
    ComputedMetric,
    EmployeeProfile,
    ExpenseItem,
    FinancialYearRules,
    InputRow,
    MetricKey,
    ReceiptDraft,
    SalaryHead,
    SalaryRevision,
    TaxBracket,
    TravelTier,
)
from payroll_recon.exceptions import NotFoundError
from payroll_recon.models import (
    PayrollAttendanceEntry,
    PayrollComputedValue,
    PayrollEmployeeProfile,
    PayrollExpenseEntry,
    PayrollFinancialYear,
    PayrollInputValue,
    PayrollPeriod,
    PayrollPublicHoliday,
    PayrollReceipt,
    PayrollSalaryHead,
    PayrollSalaryRevision,
    PayrollTravelAllowanceTier,
    ReceiptStatus,
)


class PeriodRepository:
    """Data access for one unit of work on payroll periods.

    Loaders return engine-facing dataclasses; writers operate on ORM rows and
    never commit. Transaction boundaries belong to the calling service.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # ===== Periods =====

    async def get_period(self, period_id: UUID) -> PayrollPeriod | None:
        result = await self.session.execute(
            select(PayrollPeriod).where(PayrollPeriod.period_id == period_id)
        )
        return result.scalar_one_or_none()

    async def require_period(self, period_id: UUID) -> PayrollPeriod:
        """Load a period or raise NotFoundError."""
        period = await self.get_period(period_id)
        if period is None:
            raise NotFoundError("Payroll period", period_id)
        return period

    async def get_period_by_start(self, period_start: date) -> PayrollPeriod | None:
        result = await self.session.execute(
            select(PayrollPeriod).where(PayrollPeriod.period_start == period_start)
        )
        return result.scalar_one_or_none()

    async def get_previous_period(self, period_start: date) -> PayrollPeriod | None:
        """Most recent period starting before the given date."""
        result = await self.session.execute(
            select(PayrollPeriod)
            .where(PayrollPeriod.period_start < period_start)
            .order_by(PayrollPeriod.period_start.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    def set_status(
        self,
        period: PayrollPeriod,
        status: str,
        summary: dict[str, Any] | None = None,
    ) -> None:
        period.status = status
        if summary is not None:
            period.summary_json = summary

    # ===== Inputs =====

    async def list_input_values(self, period_id: UUID) -> list[PayrollInputValue]:
        result = await self.session.execute(
            select(PayrollInputValue)
            .where(PayrollInputValue.period_id == period_id)
            .order_by(PayrollInputValue.payroll_name, PayrollInputValue.component_key)
        )
        return list(result.scalars().all())

    async def load_input_rows(self, period_id: UUID) -> list[InputRow]:
        return [
            InputRow(
                payroll_name=row.payroll_name,
                component_key=row.component_key,
                amount=row.amount,
                user_id=row.user_id,
                is_override=row.is_override,
            )
            for row in await self.list_input_values(period_id)
        ]

    async def get_input_value(
        self,
        period_id: UUID,
        payroll_name: str,
        component_key: str,
    ) -> PayrollInputValue | None:
        result = await self.session.execute(
            select(PayrollInputValue).where(
                PayrollInputValue.period_id == period_id,
                PayrollInputValue.payroll_name == payroll_name,
                PayrollInputValue.component_key == component_key,
            )
        )
        return result.scalar_one_or_none()

    async def upsert_input_value(
        self,
        period_id: UUID,
        payroll_name: str,
        component_key: str,
        amount: Decimal,
        *,
        source_method: str,
        is_override: bool,
        user_id: UUID | None = None,
        source_sheet: str | None = None,
        source_cell: str | None = None,
        note: str | None = None,
        provenance: dict[str, Any] | None = None,
    ) -> PayrollInputValue:
        """Insert or update the single row for (period, payroll name, component key)."""
        row = await self.get_input_value(period_id, payroll_name, component_key)
        if row is None:
            row = PayrollInputValue(
                period_id=period_id,
                payroll_name=payroll_name,
                component_key=component_key,
            )
            self.session.add(row)
        row.amount = amount
        row.source_method = source_method
        row.is_override = is_override
        if user_id is not None:
            row.user_id = user_id
        if source_sheet is not None:
            row.source_sheet = source_sheet
        if source_cell is not None:
            row.source_cell = source_cell
        row.note = note
        row.provenance_json = provenance
        await self.session.flush()
        return row

    async def delete_inputs(self, period_id: UUID) -> None:
        await self.session.execute(
            delete(PayrollInputValue).where(PayrollInputValue.period_id == period_id)
        )

    # ===== Expenses =====

    async def list_expense_entries(self, period_id: UUID) -> list[PayrollExpenseEntry]:
        result = await self.session.execute(
            select(PayrollExpenseEntry)
            .where(PayrollExpenseEntry.period_id == period_id)
            .order_by(PayrollExpenseEntry.payroll_name, PayrollExpenseEntry.category_key)
        )
        return list(result.scalars().all())

    async def load_expenses(self, period_id: UUID) -> list[ExpenseItem]:
        return [
            ExpenseItem(
                payroll_name=row.payroll_name,
                category_key=row.category_key,
                description=row.description,
                amount=row.amount,
            )
            for row in await self.list_expense_entries(period_id)
        ]

    async def delete_expenses(self, period_id: UUID) -> None:
        await self.session.execute(
            delete(PayrollExpenseEntry).where(PayrollExpenseEntry.period_id == period_id)
        )

    # ===== Master data =====

    async def load_financial_year(self, on_date: date) -> FinancialYearRules | None:
        """Financial year covering a date, preferring the active one."""
        result = await self.session.execute(
            select(PayrollFinancialYear)
            .where(
                PayrollFinancialYear.start_date <= on_date,
                PayrollFinancialYear.end_date >= on_date,
            )
            .options(selectinload(PayrollFinancialYear.tax_brackets))
            .order_by(PayrollFinancialYear.is_active.desc(), PayrollFinancialYear.start_date.desc())
            .limit(1)
        )
        year = result.scalar_one_or_none()
        if year is None:
            return None
        return FinancialYearRules(
            financial_year_id=year.financial_year_id,
            label=year.label,
            brackets=tuple(
                TaxBracket(
                    income_from=b.income_from,
                    income_to=b.income_to,
                    tax_rate=b.tax_rate,
                    fixed_tax=b.fixed_tax,
                )
                for b in year.tax_brackets
            ),
        )

    async def load_salary_heads(self) -> dict[str, SalaryHead]:
        result = await self.session.execute(
            select(PayrollSalaryHead).where(PayrollSalaryHead.is_active.is_(True))
        )
        return {
            head.code.upper(): SalaryHead(code=head.code.upper(), type=head.type, is_taxable=head.is_taxable)
            for head in result.scalars().all()
        }

    async def load_holidays(self, start: date, end: date) -> list[date]:
        result = await self.session.execute(
            select(PayrollPublicHoliday.holiday_date)
            .where(PayrollPublicHoliday.holiday_date.between(start, end))
            .order_by(PayrollPublicHoliday.holiday_date)
        )
        return list(result.scalars().all())

    async def list_travel_tiers(
        self,
        start: date | None = None,
        end: date | None = None,
        transport_mode: str | None = None,
    ) -> list[PayrollTravelAllowanceTier]:
        """Active tiers whose effective window intersects [start, end]."""
        query = select(PayrollTravelAllowanceTier).where(
            PayrollTravelAllowanceTier.is_active.is_(True)
        )
        if end is not None:
            query = query.where(PayrollTravelAllowanceTier.effective_from <= end)
        if start is not None:
            query = query.where(
                or_(
                    PayrollTravelAllowanceTier.effective_to.is_(None),
                    PayrollTravelAllowanceTier.effective_to >= start,
                )
            )
        if transport_mode is not None:
            query = query.where(PayrollTravelAllowanceTier.transport_mode == transport_mode)
        query = query.order_by(
            PayrollTravelAllowanceTier.transport_mode,
            PayrollTravelAllowanceTier.min_km,
            PayrollTravelAllowanceTier.effective_from.desc(),
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def load_travel_tiers(self, start: date, end: date) -> list[TravelTier]:
        return [
            TravelTier(
                transport_mode=tier.transport_mode,
                min_km=tier.min_km,
                max_km=tier.max_km,
                monthly_rate=tier.monthly_rate,
                effective_from=tier.effective_from,
                effective_to=tier.effective_to,
                is_active=tier.is_active,
                tier_id=tier.travel_tier_id,
            )
            for tier in await self.list_travel_tiers(start, end)
        ]

    # ===== Employees =====

    async def load_profiles(self, user_ids: Iterable[UUID]) -> dict[UUID, EmployeeProfile]:
        ids = list(user_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(PayrollEmployeeProfile).where(PayrollEmployeeProfile.user_id.in_(ids))
        )
        return {
            p.user_id: EmployeeProfile(
                user_id=p.user_id,
                transport_mode=p.transport_mode,
                distance_km=p.distance_km,
            )
            for p in result.scalars().all()
        }

    async def load_attendance(
        self,
        period_id: UUID,
        user_ids: Iterable[UUID],
    ) -> dict[UUID, list[AttendanceRecord]]:
        ids = list(user_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(PayrollAttendanceEntry)
            .where(
                PayrollAttendanceEntry.period_id == period_id,
                PayrollAttendanceEntry.user_id.in_(ids),
            )
            .order_by(PayrollAttendanceEntry.attendance_date)
        )
        attendance: dict[UUID, list[AttendanceRecord]] = {}
        for entry in result.scalars().all():
            attendance.setdefault(entry.user_id, []).append(
                AttendanceRecord(attendance_date=entry.attendance_date, status=entry.status)
            )
        return attendance

    async def load_latest_revisions(
        self,
        user_ids: Iterable[UUID],
        period_start: date,
    ) -> dict[UUID, SalaryRevision]:
        """Latest revision per user with effective_from on or before period start."""
        ids = list(user_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(PayrollSalaryRevision, PayrollEmployeeProfile.user_id)
            .join(PayrollEmployeeProfile)
            .where(
                PayrollEmployeeProfile.user_id.in_(ids),
                PayrollSalaryRevision.effective_from <= period_start,
            )
            .options(selectinload(PayrollSalaryRevision.lines))
            .order_by(PayrollEmployeeProfile.user_id, PayrollSalaryRevision.effective_from.desc())
        )
        revisions: dict[UUID, SalaryRevision] = {}
        for revision, user_id in result.all():
            if user_id in revisions:
                continue
            revisions[user_id] = SalaryRevision(
                revision_id=revision.salary_revision_id,
                effective_from=revision.effective_from,
                lines={line.salary_head_code.upper(): line.amount for line in revision.lines},
            )
        return revisions

    # ===== Computed snapshot =====

    async def load_previous_balances(self, period_start: date) -> dict[str, Decimal]:
        """BALANCE per payroll name from the most recent prior period (empty if none)."""
        previous = await self.get_previous_period(period_start)
        if previous is None:
            return {}
        result = await self.session.execute(
            select(PayrollComputedValue.payroll_name, PayrollComputedValue.amount).where(
                PayrollComputedValue.period_id == previous.period_id,
                PayrollComputedValue.metric_key == MetricKey.BALANCE.value,
            )
        )
        return {name: amount for name, amount in result.all()}

    async def list_computed_values(self, period_id: UUID) -> list[PayrollComputedValue]:
        result = await self.session.execute(
            select(PayrollComputedValue)
            .where(PayrollComputedValue.period_id == period_id)
            .order_by(PayrollComputedValue.payroll_name, PayrollComputedValue.metric_key)
        )
        return list(result.scalars().all())

    async def delete_computed_snapshot(self, period_id: UUID) -> None:
        await self.session.execute(
            delete(PayrollComputedValue).where(PayrollComputedValue.period_id == period_id)
        )
        await self.session.execute(
            delete(PayrollReceipt).where(PayrollReceipt.period_id == period_id)
        )

    async def replace_computed_snapshot(
        self,
        period_id: UUID,
        computed_values: Sequence[ComputedMetric],
        receipts: Sequence[ReceiptDraft],
    ) -> None:
        """Delete every computed value and receipt of a period, then insert the new set."""
        await self.delete_computed_snapshot(period_id)
        self.session.add_all(
            PayrollComputedValue(
                period_id=period_id,
                payroll_name=value.payroll_name,
                user_id=value.user_id,
                metric_key=value.metric_key.value,
                amount=value.amount,
                formula_key=value.formula_key,
                formula_version=value.formula_version,
                lineage_json=value.lineage,
            )
            for value in computed_values
        )
        self.session.add_all(
            PayrollReceipt(
                period_id=period_id,
                payroll_name=draft.payroll_name,
                user_id=draft.user_id,
                receipt_json=draft.receipt_json,
                status=ReceiptStatus.READY.value,
                version=1,
            )
            for draft in receipts
        )
        await self.session.flush()

    # ===== Receipts =====

    async def list_receipts(
        self,
        period_id: UUID,
        statuses: Iterable[str] | None = None,
        receipt_ids: Iterable[UUID] | None = None,
    ) -> list[PayrollReceipt]:
        query = (
            select(PayrollReceipt)
            .where(PayrollReceipt.period_id == period_id)
            .options(selectinload(PayrollReceipt.user))
            .order_by(PayrollReceipt.payroll_name)
        )
        if statuses is not None:
            query = query.where(PayrollReceipt.status.in_(list(statuses)))
        if receipt_ids is not None:
            query = query.where(PayrollReceipt.receipt_id.in_(list(receipt_ids)))
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_receipt(self, receipt_id: UUID) -> PayrollReceipt | None:
        result = await self.session.execute(
            select(PayrollReceipt).where(PayrollReceipt.receipt_id == receipt_id)
        )
        return result.scalar_one_or_none()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
