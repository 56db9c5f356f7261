"""Tests for net-vs-paid reconciliation."""

from decimal import Decimal

from payroll_recon.calculators.reconciliation import (
    NET_VS_PAID,
    MismatchSeverity,
    reconcile_net_vs_paid,
)


class TestReconcileNetVsPaid:
    def test_within_tolerance(self):
        assert reconcile_net_vs_paid("Ali", "02/2026", Decimal("100000"), Decimal("100000.5")) is None

    def test_exact_tolerance_is_not_a_mismatch(self):
        assert reconcile_net_vs_paid("Ali", "02/2026", Decimal("100"), Decimal("99"), tolerance=Decimal("1")) is None

    def test_one_cent_over_tolerance_is_a_mismatch(self):
        mismatch = reconcile_net_vs_paid("Ali", "02/2026", Decimal("100"), Decimal("98.99"), tolerance=Decimal("1"))
        assert mismatch is not None
        assert mismatch.check == NET_VS_PAID
        assert mismatch.delta == Decimal("1.01")
        assert mismatch.severity == MismatchSeverity.WARNING

    def test_critical_beyond_multiplier(self):
        mismatch = reconcile_net_vs_paid("Ali", "02/2026", Decimal("100000"), Decimal("90000"), tolerance=Decimal("100"))
        assert mismatch is not None
        assert mismatch.severity == MismatchSeverity.CRITICAL

    def test_severity_threshold(self):
        """Deviation equal to tolerance * multiplier is still a warning."""
        at_threshold = reconcile_net_vs_paid("Ali", "02/2026", Decimal("105"), Decimal("100"))
        over_threshold = reconcile_net_vs_paid("Ali", "02/2026", Decimal("105.01"), Decimal("100"))
        assert at_threshold.severity == MismatchSeverity.WARNING
        assert over_threshold.severity == MismatchSeverity.CRITICAL

    def test_overpayment_has_negative_delta(self):
        mismatch = reconcile_net_vs_paid("Ali", "02/2026", Decimal("100"), Decimal("120"))
        assert mismatch.delta == Decimal("-20")

    def test_to_dict(self):
        mismatch = reconcile_net_vs_paid("Ali", "02/2026", Decimal("100.00"), Decimal("90.00"))
        data = mismatch.to_dict()
        assert data["payrollName"] == "Ali"
        assert data["periodKey"] == "02/2026"
        assert data["expected"] == "100.00"
        assert data["actual"] == "90.00"
        assert data["delta"] == "10.00"
        assert data["severity"] == "critical"
