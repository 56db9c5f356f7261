"""Transactional period recalculation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payroll_recon.calculators.engine import PayrollEngine, PeriodComputation
from payroll_recon.calculators.formula_registry import APPLIED_FIXES
from payroll_recon.calculators.reconciliation import ReconciliationMismatch
from payroll_recon.calculators.types import ComponentKey, PeriodSnapshot, resolved_user_id
from payroll_recon.config import get_settings
from payroll_recon.database import PeriodLockRegistry, acquire_period_xact_lock, period_locks
from payroll_recon.models import PayrollPeriod, PeriodStatus, SourceMethod
from payroll_recon.normalizers import to_period_key
from payroll_recon.repositories.period_repository import PeriodRepository, utcnow
from payroll_recon.services.identity_resolver import IdentityResolver
from payroll_recon.services.state_machine import PeriodStateMachine

logger = logging.getLogger(__name__)

ATTENDANCE_TRAVEL = "ATTENDANCE_TRAVEL"


@dataclass
class RecalculateResult:
    """Outcome of one period recalculation."""

    period_id: UUID
    period_key: str
    payroll_count: int
    computed_count: int
    mismatch_count: int
    mismatches: list[ReconciliationMismatch] = field(default_factory=list)
    applied_fixes: list[str] = field(default_factory=list)
    unresolved_names: list[str] = field(default_factory=list)
    ambiguous_names: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "periodId": str(self.period_id),
            "periodKey": self.period_key,
            "payrollCount": self.payroll_count,
            "computedCount": self.computed_count,
            "mismatchCount": self.mismatch_count,
            "mismatches": [m.to_dict() for m in self.mismatches],
            "appliedFixes": list(self.applied_fixes),
            "unresolvedNames": list(self.unresolved_names),
            "ambiguousNames": list(self.ambiguous_names),
            "warnings": list(self.warnings),
        }


class RecalculationService:
    """Runs the payroll engine for a period as one atomic unit of work.

    Each call opens its own session and transaction: load the period snapshot,
    compute in memory, then upsert engine-derived travel inputs, replace the
    computed values and receipts, and stamp status and summary. Any failure
    rolls the whole transaction back and leaves the prior state intact.

    Recalculations of the same period are serialized by an in-process lock
    and, on PostgreSQL, a transaction-scoped advisory lock.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: PayrollEngine | None = None,
        locks: PeriodLockRegistry | None = None,
    ):
        settings = get_settings()
        self.session_factory = session_factory
        self.engine = engine or PayrollEngine(
            critical_multiplier=settings.critical_multiplier,
            weekend_days=settings.weekend_days,
        )
        self.locks = locks or period_locks

    async def recalculate_period(
        self,
        period_id: UUID,
        tolerance: Decimal | int | str | None = None,
    ) -> RecalculateResult:
        """Recompute every payroll name of a period and persist the new snapshot."""
        tol = Decimal(str(tolerance)) if tolerance is not None else get_settings().default_tolerance

        async with self.locks.hold(period_id):
            async with self.session_factory() as session:
                async with session.begin():
                    await acquire_period_xact_lock(session, period_id)
                    repo = PeriodRepository(session)
                    period = await repo.require_period(period_id)
                    PeriodStateMachine.ensure_can_calculate(period)

                    logger.info("Recalculating payroll period %s (%s)", period.label, period_id)
                    snapshot = await self.load_snapshot(session, period)
                    computation = self._engine_for(tol).compute_period(snapshot)
                    await self._persist(repo, period, computation, tol)

        result = self._build_result(computation)
        logger.info(
            "Recalculated period %s: %d payroll names, %d computed values, %d mismatches",
            result.period_key,
            result.payroll_count,
            result.computed_count,
            result.mismatch_count,
        )
        if result.unresolved_names:
            logger.warning(
                "Period %s has unresolved payroll names: %s",
                result.period_key,
                ", ".join(result.unresolved_names),
            )
        return result

    def _engine_for(self, tolerance: Decimal) -> PayrollEngine:
        if tolerance == self.engine.tolerance:
            return self.engine
        return PayrollEngine(
            known_earning_keys=self.engine.known_earning_keys,
            known_deduction_keys=self.engine.known_deduction_keys,
            legacy_tax_estimator=self.engine.legacy_tax_estimator,
            tolerance=tolerance,
            critical_multiplier=self.engine.critical_multiplier,
            weekend_days=self.engine.weekend_days,
        )

    async def load_snapshot(self, session: AsyncSession, period: PayrollPeriod) -> PeriodSnapshot:
        """Load everything the engine needs for a period."""
        repo = PeriodRepository(session)
        period_id = period.period_id
        input_rows = await repo.load_input_rows(period_id)

        payroll_names = sorted({row.payroll_name for row in input_rows})
        identities = await IdentityResolver(session).resolve_names(payroll_names)

        user_ids = {row.user_id for row in input_rows if row.user_id is not None}
        user_ids.update(
            uid for uid in (resolved_user_id(r) for r in identities.values()) if uid is not None
        )

        financial_year = await repo.load_financial_year(period.period_start)
        if financial_year is None or not financial_year.brackets:
            logger.warning(
                "No financial year with tax brackets for %s; legacy slab estimator applies",
                period.period_start,
            )

        return PeriodSnapshot(
            period_id=period_id,
            period_key=to_period_key(period.period_start),
            period_start=period.period_start,
            period_end=period.period_end,
            input_rows=input_rows,
            identities=identities,
            financial_year=financial_year,
            salary_heads=await repo.load_salary_heads(),
            holidays=await repo.load_holidays(period.period_start, period.period_end),
            travel_tiers=await repo.load_travel_tiers(period.period_start, period.period_end),
            profiles=await repo.load_profiles(user_ids),
            attendance=await repo.load_attendance(period_id, user_ids),
            revisions=await repo.load_latest_revisions(user_ids, period.period_start),
            previous_balances=await repo.load_previous_balances(period.period_start),
            expenses=await repo.load_expenses(period_id),
        )

    async def _persist(
        self,
        repo: PeriodRepository,
        period: PayrollPeriod,
        computation: PeriodComputation,
        tolerance: Decimal,
    ) -> None:
        for upsert in computation.travel_upserts:
            await repo.upsert_input_value(
                period.period_id,
                upsert.payroll_name,
                ComponentKey.TRAVEL_REIMBURSEMENT.value,
                upsert.amount,
                source_method=SourceMethod.ENGINE.value,
                is_override=False,
                user_id=upsert.user_id,
                provenance={
                    "generatedBy": ATTENDANCE_TRAVEL,
                    "tierId": str(upsert.tier_id) if upsert.tier_id else None,
                    "presentDays": upsert.present_days,
                    "workingDays": upsert.working_days,
                },
            )

        await repo.replace_computed_snapshot(
            period.period_id, computation.computed_values, computation.receipts
        )

        PeriodStateMachine.validate_transition(period.status, PeriodStatus.CALCULATED)
        repo.set_status(
            period,
            PeriodStatus.CALCULATED.value,
            summary=self.build_summary(computation, tolerance),
        )
        await repo.session.flush()

    @staticmethod
    def build_summary(computation: PeriodComputation, tolerance: Decimal) -> dict[str, Any]:
        settings = get_settings()
        mismatches = computation.mismatches
        return {
            "periodKey": computation.period_key,
            "engineVersion": settings.engine_version,
            "currency": settings.currency,
            "tolerance": str(tolerance),
            "mismatchCount": len(mismatches),
            "mismatches": [m.to_dict() for m in mismatches],
            "appliedFixes": list(APPLIED_FIXES),
            "computedAt": utcnow().isoformat(),
            "workingDays": computation.working_days,
            "taxFinancialYearId": (
                str(computation.financial_year_id) if computation.financial_year_id else None
            ),
            "unresolvedNames": computation.unresolved_names,
            "ambiguousNames": computation.ambiguous_names,
            "warnings": list(computation.warnings),
        }

    @staticmethod
    def _build_result(computation: PeriodComputation) -> RecalculateResult:
        mismatches = computation.mismatches
        return RecalculateResult(
            period_id=computation.period_id,
            period_key=computation.period_key,
            payroll_count=len(computation.employees),
            computed_count=len(computation.computed_values),
            mismatch_count=len(mismatches),
            mismatches=mismatches,
            applied_fixes=list(APPLIED_FIXES),
            unresolved_names=computation.unresolved_names,
            ambiguous_names=computation.ambiguous_names,
            warnings=list(computation.warnings),
        )
