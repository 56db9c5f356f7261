"""Type definitions for the payroll computation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Union
from uuid import UUID

ZERO = Decimal("0")


class ComponentKey(str, Enum):
    """Known pay component keys."""

    BASIC_SALARY = "BASIC_SALARY"
    MEDICAL_TAX_EXEMPTION = "MEDICAL_TAX_EXEMPTION"
    BONUS = "BONUS"
    MEDICAL_ALLOWANCE = "MEDICAL_ALLOWANCE"
    TRAVEL_REIMBURSEMENT = "TRAVEL_REIMBURSEMENT"
    UTILITY_REIMBURSEMENT = "UTILITY_REIMBURSEMENT"
    MEALS_REIMBURSEMENT = "MEALS_REIMBURSEMENT"
    MOBILE_REIMBURSEMENT = "MOBILE_REIMBURSEMENT"
    EXPENSE_REIMBURSEMENT = "EXPENSE_REIMBURSEMENT"
    ADVANCE_LOAN = "ADVANCE_LOAN"
    INCOME_TAX = "INCOME_TAX"
    ADJUSTMENT = "ADJUSTMENT"
    LOAN_REPAYMENT = "LOAN_REPAYMENT"
    PAID = "PAID"


class MetricKey(str, Enum):
    """Computed aggregate keys, in emission order."""

    TOTAL_TAXABLE_SALARY = "TOTAL_TAXABLE_SALARY"
    TOTAL_EARNINGS = "TOTAL_EARNINGS"
    TOTAL_DEDUCTIONS = "TOTAL_DEDUCTIONS"
    NET_SALARY = "NET_SALARY"
    BALANCE = "BALANCE"


class TaxSource(str, Enum):
    """Which branch of the income tax fallback chain produced the tax."""

    EXPLICIT_INPUT = "EXPLICIT_INPUT"
    FINANCIAL_YEAR = "FINANCIAL_YEAR"
    LEGACY_SLABS = "LEGACY_SLABS"


KNOWN_EARNING_KEYS: frozenset[str] = frozenset(
    {
        ComponentKey.BASIC_SALARY.value,
        ComponentKey.MEDICAL_TAX_EXEMPTION.value,
        ComponentKey.BONUS.value,
        ComponentKey.MEDICAL_ALLOWANCE.value,
        ComponentKey.TRAVEL_REIMBURSEMENT.value,
        ComponentKey.UTILITY_REIMBURSEMENT.value,
        ComponentKey.MEALS_REIMBURSEMENT.value,
        ComponentKey.MOBILE_REIMBURSEMENT.value,
        ComponentKey.EXPENSE_REIMBURSEMENT.value,
        ComponentKey.ADVANCE_LOAN.value,
    }
)

KNOWN_DEDUCTION_KEYS: frozenset[str] = frozenset(
    {
        ComponentKey.INCOME_TAX.value,
        ComponentKey.ADJUSTMENT.value,
        ComponentKey.LOAN_REPAYMENT.value,
        ComponentKey.PAID.value,
    }
)


# ===== Identity resolution =====


@dataclass(frozen=True)
class Resolved:
    user_id: UUID


@dataclass(frozen=True)
class Ambiguous:
    candidate_user_ids: tuple[UUID, ...]


@dataclass(frozen=True)
class Unresolved:
    pass


IdentityResolution = Union[Resolved, Ambiguous, Unresolved]


def resolved_user_id(resolution: IdentityResolution) -> UUID | None:
    """Return the user id of a resolution, or None when not resolved."""
    if isinstance(resolution, Resolved):
        return resolution.user_id
    return None


# ===== Period snapshot (engine input) =====


@dataclass(frozen=True)
class InputRow:
    """An input value as the engine sees it."""

    payroll_name: str
    component_key: str
    amount: Decimal
    user_id: UUID | None = None
    is_override: bool = False


@dataclass(frozen=True)
class TaxBracket:
    """A progressive tax bracket (annual amounts)."""

    income_from: Decimal
    income_to: Decimal | None  # None = open-ended
    tax_rate: Decimal
    fixed_tax: Decimal = ZERO


@dataclass(frozen=True)
class FinancialYearRules:
    financial_year_id: UUID
    label: str
    brackets: tuple[TaxBracket, ...]


@dataclass(frozen=True)
class TravelTier:
    transport_mode: str
    min_km: Decimal
    max_km: Decimal | None
    monthly_rate: Decimal
    effective_from: date
    effective_to: date | None = None
    is_active: bool = True
    tier_id: UUID | None = None


@dataclass(frozen=True)
class EmployeeProfile:
    user_id: UUID
    transport_mode: str | None
    distance_km: Decimal | None


@dataclass(frozen=True)
class AttendanceRecord:
    attendance_date: date
    status: str


@dataclass(frozen=True)
class SalaryHead:
    code: str
    type: str
    is_taxable: bool


@dataclass(frozen=True)
class SalaryRevision:
    """Latest salary revision in effect for a user, lines keyed by head code."""

    revision_id: UUID | None
    effective_from: date
    lines: dict[str, Decimal]


@dataclass(frozen=True)
class ExpenseItem:
    payroll_name: str
    category_key: str
    description: str | None
    amount: Decimal


@dataclass
class PeriodSnapshot:
    """Everything the engine needs to compute one period, loaded up front."""

    period_id: UUID
    period_key: str
    period_start: date
    period_end: date
    input_rows: list[InputRow]
    identities: dict[str, IdentityResolution] = field(default_factory=dict)
    financial_year: FinancialYearRules | None = None
    salary_heads: dict[str, SalaryHead] = field(default_factory=dict)
    holidays: list[date] = field(default_factory=list)
    travel_tiers: list[TravelTier] = field(default_factory=list)
    profiles: dict[UUID, EmployeeProfile] = field(default_factory=dict)
    attendance: dict[UUID, list[AttendanceRecord]] = field(default_factory=dict)
    revisions: dict[UUID, SalaryRevision] = field(default_factory=dict)
    previous_balances: dict[str, Decimal] = field(default_factory=dict)
    expenses: list[ExpenseItem] = field(default_factory=list)


# ===== Engine output =====


@dataclass(frozen=True)
class ComputedMetric:
    payroll_name: str
    user_id: UUID | None
    metric_key: MetricKey
    amount: Decimal
    formula_key: str
    formula_version: str
    lineage: dict[str, Any]


@dataclass(frozen=True)
class TravelInputUpsert:
    """An engine-derived travel reimbursement to persist as a non-override input."""

    payroll_name: str
    user_id: UUID
    amount: Decimal
    tier_id: UUID | None
    present_days: int
    working_days: int


@dataclass
class ReceiptDraft:
    payroll_name: str
    user_id: UUID | None
    receipt_json: dict[str, Any]
