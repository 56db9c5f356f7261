"""Tests for tax formulas and the fix catalog."""

from decimal import Decimal

from payroll_recon.calculators.formula_registry import (
    APPLIED_FIXES,
    FORMULA_VERSION,
    LEGACY_TAX_SLABS,
    UPDATED_TAX_SLABS,
    FixId,
    calculate_annual_progressive_tax,
    calculate_monthly_progressive_tax,
    estimate_income_tax_from_slabs,
    round_to_cents,
    slab_set_for_period,
)
from payroll_recon.calculators.types import TaxBracket


def bracket(income_from, income_to, rate, fixed="0") -> TaxBracket:
    return TaxBracket(
        income_from=Decimal(income_from),
        income_to=Decimal(income_to) if income_to is not None else None,
        tax_rate=Decimal(rate),
        fixed_tax=Decimal(fixed),
    )


BRACKETS = [
    bracket("0", "600000", "0"),
    bracket("600000", "1200000", "0.01"),
    bracket("1200000", "2200000", "0.11", "6000"),
    bracket("2200000", "3200000", "0.23", "116000"),
]


class TestFixCatalog:
    def test_formula_version_defined(self):
        assert FORMULA_VERSION

    def test_fix_ids(self):
        assert all(fix.value.startswith("FIX_") for fix in FixId)
        assert APPLIED_FIXES == tuple(fix.value for fix in FixId)
        assert len(APPLIED_FIXES) == 4


class TestRounding:
    def test_half_up(self):
        assert round_to_cents(Decimal("1.005")) == Decimal("1.01")
        assert round_to_cents(Decimal("1.004")) == Decimal("1.00")
        assert round_to_cents(Decimal("-1.005")) == Decimal("-1.01")


class TestProgressiveTax:
    """Marginal tax summed across ordered brackets."""

    def test_annual_tax_across_brackets(self):
        """0 + 6,000 + 110,000 + 69,000."""
        assert calculate_annual_progressive_tax(Decimal("2500000"), BRACKETS) == Decimal("185000")

    def test_bracket_order_does_not_matter(self):
        shuffled = list(reversed(BRACKETS))
        assert calculate_annual_progressive_tax(Decimal("2500000"), shuffled) == Decimal("185000")

    def test_zero_and_negative_base(self):
        assert calculate_annual_progressive_tax(Decimal("0"), BRACKETS) == Decimal("0")
        assert calculate_annual_progressive_tax(Decimal("-100"), BRACKETS) == Decimal("0")

    def test_income_at_bracket_boundary(self):
        assert calculate_annual_progressive_tax(Decimal("1200000"), BRACKETS) == Decimal("6000")

    def test_open_ended_bracket(self):
        brackets = [bracket("0", "100", "0"), bracket("100", None, "0.5")]
        assert calculate_annual_progressive_tax(Decimal("1100"), brackets) == Decimal("500")

    def test_income_above_capped_top_bracket(self):
        """Income beyond the last capped bracket is untaxed."""
        assert calculate_annual_progressive_tax(Decimal("4000000"), BRACKETS) == Decimal("346000")

    def test_monthly_tax(self):
        """Monthly base is annualized, taxed and divided back to cents."""
        # 2,500,000 / 12 annualizes back to 2,500,000 within rounding.
        monthly = calculate_monthly_progressive_tax(Decimal("208333.33"), BRACKETS)
        assert monthly == Decimal("15416.67")

    def test_monthly_tax_negative_base(self):
        assert calculate_monthly_progressive_tax(Decimal("-5000"), BRACKETS) == Decimal("0.00")


class TestLegacySlabEstimator:
    def test_zero_for_non_positive_base(self):
        assert estimate_income_tax_from_slabs("01/2026", Decimal("0")) == Decimal("0")
        assert estimate_income_tax_from_slabs("01/2026", Decimal("-5000")) == Decimal("0")

    def test_monotonic_within_period(self):
        low = estimate_income_tax_from_slabs("01/2026", Decimal("80000"))
        high = estimate_income_tax_from_slabs("01/2026", Decimal("250000"))
        assert high > low

    def test_slab_set_selection(self):
        assert slab_set_for_period("06/2024") is LEGACY_TAX_SLABS
        assert slab_set_for_period("07/2024") is UPDATED_TAX_SLABS
        assert slab_set_for_period("not-a-key") is UPDATED_TAX_SLABS

    def test_updated_slab_amount(self):
        """100,000/month = 1.2M/yr sits at the floor of the 12.5% slab: 15,000/yr."""
        assert estimate_income_tax_from_slabs("02/2026", Decimal("100000")) == Decimal("1250.00")

    def test_legacy_slab_amount(self):
        """100,000/month in FY 2023-24 = 6,000/yr fixed at the 11% slab floor."""
        assert estimate_income_tax_from_slabs("01/2024", Decimal("100000")) == Decimal("500.00")
