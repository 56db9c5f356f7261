"""Versioned tax formulas and the fix catalog attached to computed lineage.

Everything here is pure: identical input yields identical output, which is
what makes period recomputation idempotent.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Iterable

from payroll_recon.calculators.types import ZERO, TaxBracket
from payroll_recon.normalizers import period_key_to_date

FORMULA_VERSION = "payroll-v1"

OUTPUT_PRECISION = Decimal("0.01")
MONTHS_PER_YEAR = Decimal("12")


class FixId(str, Enum):
    """Named corrections to the legacy workbook formulas."""

    TRAVEL_SUMIF_RANGE = "FIX_TRAVEL_SUMIF_RANGE_V1"
    GROSS_MEDICAL_ALIGNMENT = "FIX_GROSS_MEDICAL_COLUMN_ALIGNMENT_V1"
    TAX_SLAB_REF_BOUNDS = "FIX_TAX_SLAB_REF_BOUNDS_V1"
    PAID_BALANCE_ROLLING = "FIX_PAID_BALANCE_ROLLING_V1"


APPLIED_FIXES: tuple[str, ...] = tuple(fix.value for fix in FixId)


def round_to_cents(amount: Decimal) -> Decimal:
    """Round amount to 2 decimal places (cents)."""
    return amount.quantize(OUTPUT_PRECISION, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class TaxSlab:
    """Flat slab of the legacy estimator (annual amounts)."""

    lower: Decimal
    upper: Decimal | None
    fixed_annual: Decimal
    rate: Decimal


def _slab(lower: str, upper: str | None, fixed_annual: str, rate: str) -> TaxSlab:
    return TaxSlab(
        lower=Decimal(lower),
        upper=Decimal(upper) if upper is not None else None,
        fixed_annual=Decimal(fixed_annual),
        rate=Decimal(rate),
    )


LEGACY_TAX_SLABS: tuple[TaxSlab, ...] = (
    _slab("0", "600000", "0", "0"),
    _slab("600000", "1200000", "0", "0.01"),
    _slab("1200000", "2200000", "6000", "0.11"),
    _slab("2200000", "3200000", "116000", "0.23"),
    _slab("3200000", "4100000", "346000", "0.30"),
    _slab("4100000", None, "616000", "0.35"),
)

UPDATED_TAX_SLABS: tuple[TaxSlab, ...] = (
    _slab("0", "600000", "0", "0"),
    _slab("600000", "1200000", "0", "0.025"),
    _slab("1200000", "2400000", "15000", "0.125"),
    _slab("2400000", "3600000", "165000", "0.20"),
    _slab("3600000", "6000000", "405000", "0.25"),
    _slab("6000000", "12000000", "1005000", "0.325"),
    _slab("12000000", None, "2955000", "0.35"),
)

# Periods starting on or after this date use the updated slab table.
UPDATED_SLABS_FROM = date(2024, 7, 1)


def slab_set_for_period(period_key: str) -> tuple[TaxSlab, ...]:
    """Pick the slab table for a period; unparseable keys get the newest table."""
    period_start = period_key_to_date(period_key)
    if period_start is None or period_start >= UPDATED_SLABS_FROM:
        return UPDATED_TAX_SLABS
    return LEGACY_TAX_SLABS


def _find_slab(slabs: tuple[TaxSlab, ...], annual_taxable: Decimal) -> TaxSlab:
    for slab in slabs:
        if annual_taxable >= slab.lower and (slab.upper is None or annual_taxable < slab.upper):
            return slab
    return slabs[-1]


def estimate_income_tax_from_slabs(period_key: str, monthly_base: Decimal) -> Decimal:
    """Legacy flat-slab monthly income tax estimate.

    Used when no financial year with brackets covers the period. The monthly
    base is annualized, the containing slab's fixed amount plus marginal rate
    is applied, and the annual figure is divided back to a monthly amount.
    """
    annual_taxable = max(ZERO, monthly_base) * MONTHS_PER_YEAR
    slab = _find_slab(slab_set_for_period(period_key), annual_taxable)
    annual_tax = slab.fixed_annual + max(ZERO, annual_taxable - slab.lower) * slab.rate
    return round_to_cents(annual_tax / MONTHS_PER_YEAR)


def calculate_annual_progressive_tax(
    annual_base: Decimal,
    brackets: Iterable[TaxBracket],
) -> Decimal:
    """Sum marginal tax across ordered, non-overlapping brackets.

    Each bracket taxes the slice of the base between its floor and cap at its
    rate; an open-ended bracket has no cap. The result is never negative.
    """
    total = ZERO
    for bracket in sorted(brackets, key=lambda b: b.income_from):
        if annual_base <= bracket.income_from:
            continue
        cap = annual_base if bracket.income_to is None else min(annual_base, bracket.income_to)
        total += (cap - bracket.income_from) * bracket.tax_rate
    return max(ZERO, total)


def calculate_monthly_progressive_tax(
    monthly_base: Decimal,
    brackets: Iterable[TaxBracket],
) -> Decimal:
    """Annualize a monthly base, apply the progressive table, and return monthly tax."""
    annual_base = max(ZERO, monthly_base) * MONTHS_PER_YEAR
    return round_to_cents(calculate_annual_progressive_tax(annual_base, brackets) / MONTHS_PER_YEAR)
