"""ORM models for the payroll reconciliation engine."""

from payroll_recon.models.base import Base, TimestampMixin
from payroll_recon.models.enums import (
    AttendanceStatus,
    IdentityStatus,
    PeriodSourceType,
    PeriodStatus,
    ReceiptStatus,
    SalaryHeadType,
    SourceMethod,
    TransportMode,
)
from payroll_recon.models.master_data import (
    PayrollFinancialYear,
    PayrollPublicHoliday,
    PayrollSalaryHead,
    PayrollTaxBracket,
    PayrollTravelAllowanceTier,
)
from payroll_recon.models.people import (
    PayrollAttendanceEntry,
    PayrollEmployeeProfile,
    PayrollIdentityMapping,
    PayrollSalaryRevision,
    PayrollSalaryRevisionLine,
    User,
)
from payroll_recon.models.period import (
    PayrollApprovalEvent,
    PayrollComputedValue,
    PayrollExpenseEntry,
    PayrollInputValue,
    PayrollPeriod,
    PayrollReceipt,
    PayrollReceiptDispatch,
)

__all__ = [
    "AttendanceStatus",
    "Base",
    "IdentityStatus",
    "PayrollApprovalEvent",
    "PayrollAttendanceEntry",
    "PayrollComputedValue",
    "PayrollEmployeeProfile",
    "PayrollExpenseEntry",
    "PayrollFinancialYear",
    "PayrollIdentityMapping",
    "PayrollInputValue",
    "PayrollPeriod",
    "PayrollPublicHoliday",
    "PayrollReceipt",
    "PayrollReceiptDispatch",
    "PayrollSalaryHead",
    "PayrollSalaryRevision",
    "PayrollSalaryRevisionLine",
    "PayrollTaxBracket",
    "PayrollTravelAllowanceTier",
    "PeriodSourceType",
    "PeriodStatus",
    "ReceiptStatus",
    "SalaryHeadType",
    "SourceMethod",
    "TimestampMixin",
    "TransportMode",
    "User",
]
