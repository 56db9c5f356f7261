"""Travel allowance tier resolution and attendance-based proration."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Sequence

from payroll_recon.calculators.formula_registry import round_to_cents
from payroll_recon.calculators.types import ZERO, AttendanceRecord, TravelTier
from payroll_recon.models.enums import AttendanceStatus

DEFAULT_WEEKEND_DAYS: tuple[int, ...] = (6, 7)  # ISO: Saturday, Sunday


def resolve_travel_tier(
    tiers: Sequence[TravelTier],
    transport_mode: str | None,
    distance_km: Decimal | None,
    on_date: date,
) -> TravelTier | None:
    """Find the active tier for a mode whose band contains the distance on a date.

    Returns None when the profile has no transport mode or distance.
    """
    if not transport_mode or distance_km is None:
        return None

    for tier in tiers:
        if not tier.is_active or tier.transport_mode != transport_mode:
            continue
        if tier.effective_from > on_date:
            continue
        if tier.effective_to is not None and tier.effective_to < on_date:
            continue
        if distance_km < tier.min_km:
            continue
        if tier.max_km is not None and distance_km > tier.max_km:
            continue
        return tier
    return None


def each_day_between(start: date, end: date) -> list[date]:
    days = []
    current = start
    while current <= end:
        days.append(current)
        current += timedelta(days=1)
    return days


def calculate_working_days(
    period_start: date,
    period_end: date,
    holidays: Iterable[date] = (),
    weekend_days: Iterable[int] = DEFAULT_WEEKEND_DAYS,
) -> int:
    """Count calendar days in the period that are neither weekend days nor holidays.

    ``weekend_days`` holds ISO weekday numbers (Monday=1 .. Sunday=7).
    """
    weekend = set(weekend_days)
    holiday_set = set(holidays)
    return sum(
        1
        for day in each_day_between(period_start, period_end)
        if day.isoweekday() not in weekend and day not in holiday_set
    )


def calculate_present_days(
    entries: Iterable[AttendanceRecord],
    period_start: date,
    period_end: date,
) -> int:
    """Count PRESENT attendance entries that fall inside the period."""
    return sum(
        1
        for entry in entries
        if period_start <= entry.attendance_date <= period_end
        and entry.status == AttendanceStatus.PRESENT.value
    )


def prorate_travel_allowance(
    monthly_rate: Decimal,
    present_days: int,
    working_days: int,
) -> Decimal:
    """Scale a monthly rate by the present-day ratio, floored at zero, in cents."""
    if working_days <= 0:
        return round_to_cents(ZERO)
    payable = monthly_rate * Decimal(present_days) / Decimal(working_days)
    return round_to_cents(max(ZERO, payable))


def bands_overlap(
    a_min: Decimal,
    a_max: Decimal | None,
    b_min: Decimal,
    b_max: Decimal | None,
) -> bool:
    """Check whether two inclusive km bands share any distance."""
    a_upper_ok = a_max is None or b_min <= a_max
    b_upper_ok = b_max is None or a_min <= b_max
    return a_upper_ok and b_upper_ok


def windows_overlap(
    a_from: date,
    a_to: date | None,
    b_from: date,
    b_to: date | None,
) -> bool:
    """Check whether two inclusive effective windows share any day."""
    return (a_to is None or b_from <= a_to) and (b_to is None or a_from <= b_to)
