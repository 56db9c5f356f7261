"""Period lifecycle operations: setup, approval, carry-forward and lock."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from payroll_recon.calculators.reconciliation import MismatchSeverity
from payroll_recon.exceptions import PayrollError, PeriodLockedError, ValidationError
from payroll_recon.models import (
    PayrollApprovalEvent,
    PayrollExpenseEntry,
    PayrollInputValue,
    PayrollPeriod,
    PeriodSourceType,
    PeriodStatus,
    SourceMethod,
)
from payroll_recon.normalizers import month_bounds, period_label_from_key, to_period_key
from payroll_recon.repositories.period_repository import PeriodRepository, utcnow
from payroll_recon.services.state_machine import InvalidTransitionError, PeriodStateMachine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CarryForwardResult:
    base_period_id: UUID
    target_period_id: UUID
    carried_input_count: int
    carried_expense_count: int


class PeriodService:
    """Service for managing payroll period lifecycle.

    Operations:
    - create_period: set up a DRAFT period for a calendar month
    - approve_period: CALCULATED → APPROVED with an optional comment
    - carry_forward: seed a period with another period's inputs and expenses
    - lock_period: freeze a period permanently
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = PeriodRepository(session)

    async def create_period(
        self,
        year: int,
        month: int,
        label: str | None = None,
        source_type: PeriodSourceType = PeriodSourceType.MANUAL,
    ) -> PayrollPeriod:
        """Create a DRAFT period spanning one calendar month."""
        if month < 1 or month > 12:
            raise ValidationError(f"Invalid month: {month}")
        start, end = month_bounds(year, month)
        if await self.repo.get_period_by_start(start) is not None:
            raise ValidationError(f"A payroll period already exists for {to_period_key(start)}")

        period = PayrollPeriod(
            label=label or period_label_from_key(to_period_key(start)),
            period_start=start,
            period_end=end,
            status=PeriodStatus.DRAFT.value,
            source_type=source_type.value,
        )
        self.session.add(period)
        await self.session.flush()
        logger.info("Created payroll period %s", period.label)
        return period

    def _record_event(
        self,
        period: PayrollPeriod,
        from_status: str,
        to_status: str,
        actor_id: UUID | None,
        comment: str | None,
    ) -> None:
        self.session.add(
            PayrollApprovalEvent(
                period_id=period.period_id,
                actor_id=actor_id,
                from_status=from_status,
                to_status=to_status,
                comment=comment,
            )
        )

    async def approve_period(
        self,
        period_id: UUID,
        actor_id: UUID | None = None,
        comment: str | None = None,
    ) -> PayrollPeriod:
        """Approve a calculated period.

        Critical reconciliation mismatches in the last run must be acknowledged
        with a comment.
        """
        period = await self.repo.require_period(period_id)
        from_status = period.status
        if from_status != PeriodStatus.CALCULATED:
            raise InvalidTransitionError(
                from_status, PeriodStatus.APPROVED, "only CALCULATED periods can be approved"
            )

        comment = comment.strip() if comment else None
        mismatches = (period.summary_json or {}).get("mismatches", [])
        critical = [m for m in mismatches if m.get("severity") == MismatchSeverity.CRITICAL.value]
        if critical and not comment:
            raise InvalidTransitionError(
                from_status,
                PeriodStatus.APPROVED,
                f"{len(critical)} critical mismatch(es) require an approval comment",
            )

        PeriodStateMachine.validate_transition(from_status, PeriodStatus.APPROVED)
        period.status = PeriodStatus.APPROVED.value
        period.approved_by_id = actor_id
        period.approved_at = utcnow()
        self._record_event(period, from_status, PeriodStatus.APPROVED.value, actor_id, comment)
        await self.session.flush()
        logger.info("Approved payroll period %s", period.label)
        return period

    async def lock_period(
        self,
        period_id: UUID,
        actor_id: UUID | None = None,
        comment: str | None = None,
    ) -> PayrollPeriod:
        period = await self.repo.require_period(period_id)
        from_status = period.status
        if from_status == PeriodStatus.LOCKED:
            raise PeriodLockedError(period_id, from_status, "lock")
        PeriodStateMachine.validate_transition(from_status, PeriodStatus.LOCKED)
        period.status = PeriodStatus.LOCKED.value
        self._record_event(period, from_status, PeriodStatus.LOCKED.value, actor_id, comment)
        await self.session.flush()
        logger.info("Locked payroll period %s", period.label)
        return period

    async def carry_forward(
        self,
        base_period_id: UUID | None,
        target_period_id: UUID,
        actor_id: UUID | None = None,
    ) -> CarryForwardResult:
        """Replace the target period's inputs and expenses with copies from the base period.

        Without a base period the most recent period starting before the target
        is used. The target's computed values and receipts are discarded and it
        returns to DRAFT with source type CARRY_FORWARD.
        """
        target = await self.repo.require_period(target_period_id)
        if base_period_id is None:
            previous = await self.repo.get_previous_period(target.period_start)
            if previous is None:
                raise ValidationError(f"No period before {target.label} to carry forward from")
            base_period_id = previous.period_id
        if base_period_id == target_period_id:
            raise ValidationError("Base and target period must differ")

        base = await self.repo.require_period(base_period_id)
        PeriodStateMachine.ensure_inputs_mutable(target, "carry forward into")

        base_inputs = await self.repo.list_input_values(base_period_id)
        base_expenses = await self.repo.list_expense_entries(base_period_id)

        await self.repo.delete_inputs(target_period_id)
        await self.repo.delete_expenses(target_period_id)

        self.session.add_all(
            PayrollInputValue(
                period_id=target_period_id,
                payroll_name=row.payroll_name,
                user_id=row.user_id,
                component_key=row.component_key,
                amount=row.amount,
                source_sheet=row.source_sheet,
                source_cell=row.source_cell,
                source_method=SourceMethod.CARRY_FORWARD.value,
                is_override=False,
                note=f"Carried forward from {base.label}",
                provenance_json={
                    "carriedForwardFromPeriodId": str(base_period_id),
                    "originalInputId": str(row.input_value_id),
                },
            )
            for row in base_inputs
        )
        self.session.add_all(
            PayrollExpenseEntry(
                period_id=target_period_id,
                payroll_name=expense.payroll_name,
                user_id=expense.user_id,
                category_key=expense.category_key,
                description=expense.description,
                amount=expense.amount,
                sheet_name=expense.sheet_name,
                row_ref=expense.row_ref,
                entered_by_id=actor_id,
            )
            for expense in base_expenses
        )

        await self.repo.delete_computed_snapshot(target_period_id)
        target.status = PeriodStatus.DRAFT.value
        target.source_type = PeriodSourceType.CARRY_FORWARD.value
        target.summary_json = {
            "carriedForwardFromPeriodId": str(base_period_id),
            "carriedForwardAt": utcnow().isoformat(),
            "carriedInputCount": len(base_inputs),
            "carriedExpenseCount": len(base_expenses),
        }
        await self.session.flush()

        logger.info(
            "Carried forward %d inputs and %d expenses from %s to %s",
            len(base_inputs),
            len(base_expenses),
            base.label,
            target.label,
        )
        return CarryForwardResult(
            base_period_id=base_period_id,
            target_period_id=target_period_id,
            carried_input_count=len(base_inputs),
            carried_expense_count=len(base_expenses),
        )

    async def delete_period(self, period_id: UUID) -> None:
        """Delete a period that has never been computed."""
        period = await self.repo.require_period(period_id)
        if await self.repo.list_computed_values(period_id):
            raise PayrollError(f"Period {period.label} has computed values and cannot be deleted")
        PeriodStateMachine.ensure_inputs_mutable(period, "delete")
        await self.repo.delete_inputs(period_id)
        await self.repo.delete_expenses(period_id)
        await self.session.delete(period)
        await self.session.flush()
