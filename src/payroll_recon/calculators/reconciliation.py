"""Computed net salary vs. recorded paid amount reconciliation."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

NET_VS_PAID = "NET_VS_PAID"
DEFAULT_TOLERANCE = Decimal("1")
DEFAULT_CRITICAL_MULTIPLIER = Decimal("5")


class MismatchSeverity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class ReconciliationMismatch:
    """A payroll name whose paid amount deviates from computed net beyond tolerance."""

    payroll_name: str
    period_key: str
    check: str
    expected: Decimal
    actual: Decimal
    delta: Decimal
    severity: MismatchSeverity
    reason: str

    def to_dict(self) -> dict[str, Any]:
        """Serialize for summary_json; amounts as strings to keep Decimal precision."""
        return {
            "payrollName": self.payroll_name,
            "periodKey": self.period_key,
            "check": self.check,
            "expected": str(self.expected),
            "actual": str(self.actual),
            "delta": str(self.delta),
            "severity": self.severity.value,
            "reason": self.reason,
        }


def reconcile_net_vs_paid(
    payroll_name: str,
    period_key: str,
    net_salary: Decimal,
    paid: Decimal,
    tolerance: Decimal = DEFAULT_TOLERANCE,
    critical_multiplier: Decimal = DEFAULT_CRITICAL_MULTIPLIER,
) -> ReconciliationMismatch | None:
    """Compare net salary to the paid amount.

    Returns None when ``abs(net - paid) <= tolerance``. Otherwise the mismatch
    is critical when the deviation exceeds ``tolerance * critical_multiplier``
    and a warning below that.
    """
    delta = net_salary - paid
    if abs(delta) <= tolerance:
        return None

    severity = (
        MismatchSeverity.CRITICAL
        if abs(delta) > tolerance * critical_multiplier
        else MismatchSeverity.WARNING
    )
    return ReconciliationMismatch(
        payroll_name=payroll_name,
        period_key=period_key,
        check=NET_VS_PAID,
        expected=net_salary,
        actual=paid,
        delta=delta,
        severity=severity,
        reason="Paid amount deviates from computed net salary beyond tolerance.",
    )
