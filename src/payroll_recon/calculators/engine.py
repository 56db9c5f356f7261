"""Payroll computation engine.

Pure computation over a fully loaded ``PeriodSnapshot``: no database access,
no clock reads. The recalculation service loads the snapshot, runs the
engine, and persists the result as one replace-snapshot transaction.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Iterable
from uuid import UUID

from payroll_recon.calculators.formula_registry import (
    APPLIED_FIXES,
    FORMULA_VERSION,
    calculate_monthly_progressive_tax,
    estimate_income_tax_from_slabs,
    round_to_cents,
)
from payroll_recon.calculators.reconciliation import (
    DEFAULT_CRITICAL_MULTIPLIER,
    DEFAULT_TOLERANCE,
    ReconciliationMismatch,
    reconcile_net_vs_paid,
)
from payroll_recon.calculators.travel import (
    DEFAULT_WEEKEND_DAYS,
    calculate_present_days,
    calculate_working_days,
    prorate_travel_allowance,
    resolve_travel_tier,
)
from payroll_recon.calculators.types import (
    KNOWN_DEDUCTION_KEYS,
    KNOWN_EARNING_KEYS,
    ZERO,
    Ambiguous,
    ComponentKey,
    ComputedMetric,
    IdentityResolution,
    InputRow,
    MetricKey,
    PeriodSnapshot,
    ReceiptDraft,
    Resolved,
    TaxSource,
    TravelInputUpsert,
    Unresolved,
)
from payroll_recon.models.enums import SalaryHeadType

LegacyTaxEstimator = Callable[[str, Decimal], Decimal]

_K = ComponentKey


@dataclass
class LineClassification:
    """Bucket keys outside the known sets, classified against the salary-head catalog."""

    additional_earnings: Decimal = ZERO
    additional_taxable_earnings: Decimal = ZERO
    additional_deductions: Decimal = ZERO
    unclassified_keys: list[str] = field(default_factory=list)

    @property
    def additional_non_taxable_earnings(self) -> Decimal:
        return self.additional_earnings - self.additional_taxable_earnings


@dataclass
class EmployeeComputation:
    """Result of computing one payroll name."""

    payroll_name: str
    user_id: UUID | None
    identity: IdentityResolution
    metrics: dict[MetricKey, Decimal]
    computed_values: list[ComputedMetric]
    receipt: ReceiptDraft
    tax_source: TaxSource
    travel_upsert: TravelInputUpsert | None = None
    mismatch: ReconciliationMismatch | None = None
    unclassified_keys: list[str] = field(default_factory=list)


@dataclass
class PeriodComputation:
    """Result of computing an entire period."""

    period_id: UUID
    period_key: str
    working_days: int
    financial_year_id: UUID | None
    employees: list[EmployeeComputation] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def computed_values(self) -> list[ComputedMetric]:
        return [value for emp in self.employees for value in emp.computed_values]

    @property
    def receipts(self) -> list[ReceiptDraft]:
        return [emp.receipt for emp in self.employees]

    @property
    def travel_upserts(self) -> list[TravelInputUpsert]:
        return [emp.travel_upsert for emp in self.employees if emp.travel_upsert is not None]

    @property
    def mismatches(self) -> list[ReconciliationMismatch]:
        return [emp.mismatch for emp in self.employees if emp.mismatch is not None]

    @property
    def unresolved_names(self) -> list[str]:
        return [e.payroll_name for e in self.employees if isinstance(e.identity, Unresolved)]

    @property
    def ambiguous_names(self) -> list[str]:
        return [e.payroll_name for e in self.employees if isinstance(e.identity, Ambiguous)]


def bucket_inputs(rows: Iterable[InputRow]) -> dict[str, Decimal]:
    """Sum input amounts per upper-cased component key."""
    bucket: dict[str, Decimal] = {}
    for row in rows:
        key = row.component_key.upper()
        bucket[key] = bucket.get(key, ZERO) + row.amount
    return bucket


def compute_inputs_fingerprint(bucket: dict[str, Decimal]) -> str:
    """Deterministic hash of the resolved component amounts."""
    canonical = {key: str(round_to_cents(bucket[key])) for key in sorted(bucket)}
    payload = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode()).hexdigest()


def _money(amount: Decimal) -> str:
    return str(round_to_cents(amount))


class PayrollEngine:
    """Monthly payroll computation engine.

    Pipeline per payroll name (stable, sorted by name):
    1) Bucket input rows by component key
    2) Seed salary revision defaults where no input or override exists
    3) Classify extra keys against the salary-head catalog
    4) Taxable base (medical exemption defaults to -medical allowance)
    5) Income tax: explicit input > financial year brackets > legacy slabs
    6) Travel reimbursement from tier and attendance unless overridden
    7-9) Total earnings, total deductions, net salary
    10) Balance rolled forward from the previous period
    11-12) Computed metrics with lineage, and a READY receipt
    """

    def __init__(
        self,
        known_earning_keys: Iterable[str] = KNOWN_EARNING_KEYS,
        known_deduction_keys: Iterable[str] = KNOWN_DEDUCTION_KEYS,
        legacy_tax_estimator: LegacyTaxEstimator = estimate_income_tax_from_slabs,
        tolerance: Decimal = DEFAULT_TOLERANCE,
        critical_multiplier: Decimal = DEFAULT_CRITICAL_MULTIPLIER,
        weekend_days: Iterable[int] = DEFAULT_WEEKEND_DAYS,
    ):
        self.known_earning_keys = frozenset(k.upper() for k in known_earning_keys)
        self.known_deduction_keys = frozenset(k.upper() for k in known_deduction_keys)
        self.legacy_tax_estimator = legacy_tax_estimator
        self.tolerance = tolerance
        self.critical_multiplier = critical_multiplier
        self.weekend_days = tuple(weekend_days)

    def compute_period(self, snapshot: PeriodSnapshot) -> PeriodComputation:
        """Compute metrics, receipts and mismatches for every payroll name in a period."""
        working_days = calculate_working_days(
            snapshot.period_start,
            snapshot.period_end,
            holidays=snapshot.holidays,
            weekend_days=self.weekend_days,
        )
        financial_year = snapshot.financial_year
        result = PeriodComputation(
            period_id=snapshot.period_id,
            period_key=snapshot.period_key,
            working_days=working_days,
            financial_year_id=financial_year.financial_year_id if financial_year else None,
        )

        rows_by_name: dict[str, list[InputRow]] = {}
        for row in snapshot.input_rows:
            rows_by_name.setdefault(row.payroll_name, []).append(row)

        for payroll_name in sorted(rows_by_name):
            emp = self.compute_employee(snapshot, payroll_name, rows_by_name[payroll_name], working_days)
            result.employees.append(emp)
            if emp.unclassified_keys:
                result.warnings.append(
                    f"Ignored unclassified component keys for '{payroll_name}': "
                    + ", ".join(emp.unclassified_keys)
                )

        if any(emp.tax_source == TaxSource.LEGACY_SLABS for emp in result.employees):
            result.warnings.insert(
                0,
                f"No financial year with tax brackets covers {snapshot.period_key}; "
                "income tax estimated from legacy slabs",
            )
        return result

    def resolve_identity(
        self,
        snapshot: PeriodSnapshot,
        payroll_name: str,
        rows: list[InputRow],
    ) -> IdentityResolution:
        """An explicit user on an input row wins over the mapping table."""
        for row in rows:
            if row.user_id is not None:
                return Resolved(row.user_id)
        return snapshot.identities.get(payroll_name, Unresolved())

    def classify_extra_lines(
        self,
        bucket: dict[str, Decimal],
        snapshot: PeriodSnapshot,
    ) -> LineClassification:
        classification = LineClassification()
        for key in sorted(bucket):
            if key in self.known_earning_keys or key in self.known_deduction_keys:
                continue
            amount = bucket[key]
            head = snapshot.salary_heads.get(key)
            if head is None:
                classification.unclassified_keys.append(key)
            elif head.type == SalaryHeadType.EARNING.value:
                classification.additional_earnings += amount
                if head.is_taxable:
                    classification.additional_taxable_earnings += amount
            elif head.type == SalaryHeadType.DEDUCTION.value:
                classification.additional_deductions += amount
            else:
                classification.unclassified_keys.append(key)
        return classification

    def compute_income_tax(
        self,
        snapshot: PeriodSnapshot,
        bucket: dict[str, Decimal],
        classification: LineClassification,
    ) -> tuple[Decimal, TaxSource]:
        """Apply the income tax fallback chain.

        The configured-bracket and legacy bases exclude the medical exemption
        offset that the taxable salary total includes.
        """
        if _K.INCOME_TAX.value in bucket:
            return bucket[_K.INCOME_TAX.value], TaxSource.EXPLICIT_INPUT

        basic = bucket.get(_K.BASIC_SALARY.value, ZERO)
        bonus = bucket.get(_K.BONUS.value, ZERO)
        financial_year = snapshot.financial_year
        if financial_year is not None and financial_year.brackets:
            base = max(ZERO, basic + bonus + classification.additional_taxable_earnings)
            return (
                calculate_monthly_progressive_tax(base, financial_year.brackets),
                TaxSource.FINANCIAL_YEAR,
            )

        return self.legacy_tax_estimator(snapshot.period_key, basic + bonus), TaxSource.LEGACY_SLABS

    def compute_travel(
        self,
        snapshot: PeriodSnapshot,
        payroll_name: str,
        user_id: UUID | None,
        rows: list[InputRow],
        bucket: dict[str, Decimal],
        working_days: int,
    ) -> tuple[Decimal, TravelInputUpsert | None]:
        travel = bucket.get(_K.TRAVEL_REIMBURSEMENT.value, ZERO)
        has_override = any(
            row.is_override and row.component_key.upper() == _K.TRAVEL_REIMBURSEMENT.value
            for row in rows
        )
        if has_override or user_id is None or working_days <= 0:
            return travel, None

        profile = snapshot.profiles.get(user_id)
        if profile is None:
            return travel, None
        tier = resolve_travel_tier(
            snapshot.travel_tiers,
            profile.transport_mode,
            profile.distance_km,
            snapshot.period_start,
        )
        if tier is None:
            return travel, None

        attendance = snapshot.attendance.get(user_id, [])
        present_days = (
            calculate_present_days(attendance, snapshot.period_start, snapshot.period_end)
            if attendance
            else working_days
        )
        amount = prorate_travel_allowance(tier.monthly_rate, present_days, working_days)
        return amount, TravelInputUpsert(
            payroll_name=payroll_name,
            user_id=user_id,
            amount=amount,
            tier_id=tier.tier_id,
            present_days=present_days,
            working_days=working_days,
        )

    def compute_employee(
        self,
        snapshot: PeriodSnapshot,
        payroll_name: str,
        rows: list[InputRow],
        working_days: int,
    ) -> EmployeeComputation:
        identity = self.resolve_identity(snapshot, payroll_name, rows)
        user_id = identity.user_id if isinstance(identity, Resolved) else None

        # 1) Bucket
        bucket = bucket_inputs(rows)

        # 2) Revision defaults
        if user_id is not None:
            revision = snapshot.revisions.get(user_id)
            if revision is not None:
                overridden = {row.component_key.upper() for row in rows if row.is_override}
                for code in sorted(revision.lines):
                    key = code.upper()
                    if key not in overridden and key not in bucket:
                        bucket[key] = revision.lines[code]

        # 3) Extra lines
        classification = self.classify_extra_lines(bucket, snapshot)

        # 4) Taxable base
        basic = bucket.get(_K.BASIC_SALARY.value, ZERO)
        bonus = bucket.get(_K.BONUS.value, ZERO)
        medical_allowance = bucket.get(_K.MEDICAL_ALLOWANCE.value, ZERO)
        medical_tax_exemption = bucket.get(_K.MEDICAL_TAX_EXEMPTION.value, -medical_allowance)
        total_taxable = (
            basic + medical_tax_exemption + bonus + classification.additional_taxable_earnings
        )

        # 5) Income tax
        income_tax, tax_source = self.compute_income_tax(snapshot, bucket, classification)

        # 6) Travel
        travel, travel_upsert = self.compute_travel(
            snapshot, payroll_name, user_id, rows, bucket, working_days
        )
        if travel_upsert is not None:
            bucket[_K.TRAVEL_REIMBURSEMENT.value] = travel

        # 7-9) Totals
        utility = bucket.get(_K.UTILITY_REIMBURSEMENT.value, ZERO)
        meals = bucket.get(_K.MEALS_REIMBURSEMENT.value, ZERO)
        mobile = bucket.get(_K.MOBILE_REIMBURSEMENT.value, ZERO)
        expense = bucket.get(_K.EXPENSE_REIMBURSEMENT.value, ZERO)
        advance_loan = bucket.get(_K.ADVANCE_LOAN.value, ZERO)
        adjustment = bucket.get(_K.ADJUSTMENT.value, ZERO)
        loan_repayment = bucket.get(_K.LOAN_REPAYMENT.value, ZERO)

        total_earnings = (
            total_taxable
            + medical_allowance
            + travel
            + utility
            + meals
            + mobile
            + expense
            + advance_loan
            + classification.additional_non_taxable_earnings
        )
        total_deductions = (
            income_tax + adjustment + loan_repayment + classification.additional_deductions
        )
        net_salary = total_earnings - total_deductions

        # 10) Balance roll-forward
        paid = bucket.get(_K.PAID.value, ZERO)
        previous_balance = snapshot.previous_balances.get(payroll_name, ZERO)
        balance = previous_balance + net_salary - paid

        metrics = {
            MetricKey.TOTAL_TAXABLE_SALARY: round_to_cents(total_taxable),
            MetricKey.TOTAL_EARNINGS: round_to_cents(total_earnings),
            MetricKey.TOTAL_DEDUCTIONS: round_to_cents(total_deductions),
            MetricKey.NET_SALARY: round_to_cents(net_salary),
            MetricKey.BALANCE: round_to_cents(balance),
        }

        # 11) Computed metrics with lineage
        lineage: dict[str, Any] = {
            "periodKey": snapshot.period_key,
            "taxFinancialYearId": (
                str(snapshot.financial_year.financial_year_id)
                if tax_source == TaxSource.FINANCIAL_YEAR and snapshot.financial_year
                else None
            ),
            "taxSource": tax_source.value,
            "workingDays": working_days,
            "fixes": list(APPLIED_FIXES),
            "inputsFingerprint": compute_inputs_fingerprint(bucket),
        }
        computed_values = [
            ComputedMetric(
                payroll_name=payroll_name,
                user_id=user_id,
                metric_key=metric_key,
                amount=amount,
                formula_key=metric_key.value,
                formula_version=FORMULA_VERSION,
                lineage=dict(lineage),
            )
            for metric_key, amount in metrics.items()
        ]

        mismatch = reconcile_net_vs_paid(
            payroll_name,
            snapshot.period_key,
            metrics[MetricKey.NET_SALARY],
            round_to_cents(paid),
            tolerance=self.tolerance,
            critical_multiplier=self.critical_multiplier,
        )

        # 12) Receipt
        expense_items = sorted(
            (item for item in snapshot.expenses if item.payroll_name == payroll_name),
            key=lambda item: (item.category_key, item.description or "", item.amount),
        )
        receipt_json = {
            "periodKey": snapshot.period_key,
            "payrollName": payroll_name,
            "earnings": {
                "basicSalary": _money(basic),
                "medicalTaxExemption": _money(medical_tax_exemption),
                "bonus": _money(bonus),
                "medicalAllowance": _money(medical_allowance),
                "travelReimbursement": _money(travel),
                "utilityReimbursement": _money(utility),
                "mealsReimbursement": _money(meals),
                "mobileReimbursement": _money(mobile),
                "expenseReimbursement": _money(expense),
                "advanceLoan": _money(advance_loan),
                "additionalEarnings": _money(classification.additional_earnings),
                "totalEarnings": _money(total_earnings),
            },
            "deductions": {
                "incomeTax": _money(income_tax),
                "adjustment": _money(adjustment),
                "loanRepayment": _money(loan_repayment),
                "additionalDeductions": _money(classification.additional_deductions),
                "totalDeductions": _money(total_deductions),
            },
            "net": {
                "netSalary": _money(net_salary),
                "paid": _money(paid),
                "previousBalance": _money(previous_balance),
                "balance": _money(balance),
            },
            "expenseItems": [
                {
                    "categoryKey": item.category_key,
                    "description": item.description,
                    "amount": _money(item.amount),
                }
                for item in expense_items
            ],
        }

        return EmployeeComputation(
            payroll_name=payroll_name,
            user_id=user_id,
            identity=identity,
            metrics=metrics,
            computed_values=computed_values,
            receipt=ReceiptDraft(payroll_name=payroll_name, user_id=user_id, receipt_json=receipt_json),
            tax_source=tax_source,
            travel_upsert=travel_upsert,
            mismatch=mismatch,
            unclassified_keys=classification.unclassified_keys,
        )
