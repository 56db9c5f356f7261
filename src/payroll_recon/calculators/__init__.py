"""Pure payroll calculators: formulas, travel proration, engine, reconciliation."""

from payroll_recon.calculators.engine import (
    EmployeeComputation,
    PayrollEngine,
    PeriodComputation,
)
from payroll_recon.calculators.formula_registry import (
    APPLIED_FIXES,
    FORMULA_VERSION,
    FixId,
    calculate_annual_progressive_tax,
    estimate_income_tax_from_slabs,
)
from payroll_recon.calculators.reconciliation import (
    MismatchSeverity,
    ReconciliationMismatch,
    reconcile_net_vs_paid,
)

__all__ = [
    "APPLIED_FIXES",
    "EmployeeComputation",
    "FORMULA_VERSION",
    "FixId",
    "MismatchSeverity",
    "PayrollEngine",
    "PeriodComputation",
    "ReconciliationMismatch",
    "calculate_annual_progressive_tax",
    "estimate_income_tax_from_slabs",
    "reconcile_net_vs_paid",
]
