"""Tax, travel, holiday, salary-head and employee master data."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from payroll_recon.calculators.travel import bands_overlap, windows_overlap
from payroll_recon.exceptions import NotFoundError, ValidationError
from payroll_recon.models import (
    PayrollEmployeeProfile,
    PayrollFinancialYear,
    PayrollPublicHoliday,
    PayrollSalaryHead,
    PayrollSalaryRevision,
    PayrollSalaryRevisionLine,
    PayrollTaxBracket,
    PayrollTravelAllowanceTier,
    SalaryHeadType,
    TransportMode,
    User,
)
from payroll_recon.repositories.period_repository import PeriodRepository
from payroll_recon.schemas import TaxBracketCreate, TravelTierCreate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SalaryHeadSeed:
    code: str
    name: str
    type: SalaryHeadType
    is_taxable: bool


SYSTEM_SALARY_HEADS: tuple[SalaryHeadSeed, ...] = (
    SalaryHeadSeed("BASIC_SALARY", "Basic Salary", SalaryHeadType.EARNING, True),
    SalaryHeadSeed("MEDICAL_ALLOWANCE", "Medical Allowance", SalaryHeadType.EARNING, False),
    SalaryHeadSeed("MOBILE_REIMBURSEMENT", "Mobile Allowance", SalaryHeadType.EARNING, False),
)

_KM_BANDS = (("0", "5"), ("6", "10"), ("11", "20"), ("21", "25"), ("26", "30"), ("31", "40"))
_BIKE_RATES = ("7500", "12000", "18000", "21000", "24000", "32000")
_CAR_RATES = ("11500", "18500", "24000", "27000", "30000", "40000")

DEFAULT_TRAVEL_TIERS: tuple[tuple[TransportMode, Decimal, Decimal, Decimal], ...] = tuple(
    (mode, Decimal(lo), Decimal(hi), Decimal(rate))
    for mode, rates in (
        (TransportMode.BIKE, _BIKE_RATES),
        (TransportMode.CAR, _CAR_RATES),
        (TransportMode.PUBLIC_TRANSPORT, _CAR_RATES),
    )
    for (lo, hi), rate in zip(_KM_BANDS, rates)
)

DEFAULT_FINANCIAL_YEAR_LABEL = "FY 2025-2026"
DEFAULT_FINANCIAL_YEAR_START = date(2025, 7, 1)
DEFAULT_FINANCIAL_YEAR_END = date(2026, 6, 30)
DEFAULT_TAX_BRACKETS: tuple[TaxBracketCreate, ...] = tuple(
    TaxBracketCreate(
        income_from=Decimal(lo),
        income_to=Decimal(hi) if hi else None,
        fixed_tax=Decimal(fixed),
        tax_rate=Decimal(rate),
    )
    for lo, hi, fixed, rate in (
        ("0", "600000", "0", "0"),
        ("600000", "1200000", "0", "0.01"),
        ("1200000", "2200000", "6000", "0.11"),
        ("2200000", "3200000", "116000", "0.23"),
        ("3200000", "4100000", "346000", "0.30"),
        ("4100000", None, "616000", "0.35"),
    )
)


def validate_brackets(brackets: Iterable[TaxBracketCreate]) -> list[TaxBracketCreate]:
    """Check brackets are contiguous, ordered and only the last is open-ended."""
    ordered = sorted(brackets, key=lambda b: b.income_from)
    for index, bracket in enumerate(ordered):
        is_last = index == len(ordered) - 1
        if bracket.income_to is None and not is_last:
            raise ValidationError("Only the last tax bracket may be open-ended")
        if bracket.income_to is not None and bracket.income_to <= bracket.income_from:
            raise ValidationError(
                f"Tax bracket upper bound {bracket.income_to} must exceed {bracket.income_from}"
            )
        if index > 0 and ordered[index - 1].income_to != bracket.income_from:
            raise ValidationError(
                f"Tax brackets must be contiguous: gap or overlap at {bracket.income_from}"
            )
    return ordered


class MasterDataService:
    """Maintains master data the engine reads during recalculation.

    Operations:
    - ensure_defaults: seed system salary heads, default financial year and travel tiers
    - create_financial_year / activate_financial_year
    - add_travel_tier: rejects bands overlapping a concurrently effective tier
    - add_public_holiday, upsert_salary_head
    - create_user, upsert_employee_profile, add_salary_revision
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # ===== Salary heads =====

    async def upsert_salary_head(
        self,
        code: str,
        name: str,
        head_type: SalaryHeadType,
        is_taxable: bool = False,
        is_system: bool = False,
    ) -> PayrollSalaryHead:
        code = code.strip().upper()
        head = await self.session.get(PayrollSalaryHead, code)
        if head is None:
            head = PayrollSalaryHead(code=code)
            self.session.add(head)
        head.name = name
        head.type = head_type.value
        head.is_taxable = is_taxable
        head.is_system = is_system
        head.is_active = True
        await self.session.flush()
        return head

    # ===== Financial years =====

    async def create_financial_year(
        self,
        label: str,
        start_date: date,
        end_date: date,
        brackets: Iterable[TaxBracketCreate],
        activate: bool = False,
    ) -> PayrollFinancialYear:
        if end_date < start_date:
            raise ValidationError("Financial year end must not precede its start")
        ordered = validate_brackets(brackets)

        year = PayrollFinancialYear(
            label=label,
            start_date=start_date,
            end_date=end_date,
            is_active=False,
        )
        year.tax_brackets = [
            PayrollTaxBracket(
                income_from=b.income_from,
                income_to=b.income_to,
                fixed_tax=b.fixed_tax,
                tax_rate=b.tax_rate,
                order_index=index + 1,
            )
            for index, b in enumerate(ordered)
        ]
        self.session.add(year)
        await self.session.flush()
        if activate:
            await self.activate_financial_year(year.financial_year_id)
        return year

    async def activate_financial_year(self, financial_year_id: UUID) -> PayrollFinancialYear:
        """Activate a year and deactivate any other year whose dates overlap it."""
        year = await self.session.get(PayrollFinancialYear, financial_year_id)
        if year is None:
            raise NotFoundError("Financial year", financial_year_id)

        await self.session.execute(
            update(PayrollFinancialYear)
            .where(
                PayrollFinancialYear.financial_year_id != financial_year_id,
                PayrollFinancialYear.start_date <= year.end_date,
                PayrollFinancialYear.end_date >= year.start_date,
            )
            .values(is_active=False)
        )
        year.is_active = True
        await self.session.flush()
        logger.info("Activated financial year %s", year.label)
        return year

    # ===== Travel tiers =====

    async def add_travel_tier(self, tier: TravelTierCreate) -> PayrollTravelAllowanceTier:
        if tier.max_km is not None and tier.max_km < tier.min_km:
            raise ValidationError("Travel tier max_km must not be below min_km")
        if tier.effective_to is not None and tier.effective_to < tier.effective_from:
            raise ValidationError("Travel tier effective_to must not precede effective_from")

        existing = await PeriodRepository(self.session).list_travel_tiers(
            start=tier.effective_from,
            end=tier.effective_to,
            transport_mode=tier.transport_mode.value,
        )
        for other in existing:
            if not windows_overlap(
                tier.effective_from, tier.effective_to, other.effective_from, other.effective_to
            ):
                continue
            if bands_overlap(tier.min_km, tier.max_km, other.min_km, other.max_km):
                raise ValidationError(
                    f"{tier.transport_mode.value} band {tier.min_km}-{tier.max_km} overlaps "
                    f"existing band {other.min_km}-{other.max_km}"
                )

        row = PayrollTravelAllowanceTier(
            transport_mode=tier.transport_mode.value,
            min_km=tier.min_km,
            max_km=tier.max_km,
            monthly_rate=tier.monthly_rate,
            effective_from=tier.effective_from,
            effective_to=tier.effective_to,
            is_active=True,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    # ===== Holidays =====

    async def add_public_holiday(self, holiday_date: date, name: str) -> PayrollPublicHoliday:
        result = await self.session.execute(
            select(PayrollPublicHoliday).where(PayrollPublicHoliday.holiday_date == holiday_date)
        )
        holiday = result.scalar_one_or_none()
        if holiday is None:
            holiday = PayrollPublicHoliday(holiday_date=holiday_date, name=name)
            self.session.add(holiday)
        else:
            holiday.name = name
        await self.session.flush()
        return holiday

    # ===== Employees =====

    async def create_user(self, name: str, email: str | None = None) -> User:
        user = User(name=name.strip(), email=email, is_active=True)
        self.session.add(user)
        await self.session.flush()
        return user

    async def upsert_employee_profile(
        self,
        user_id: UUID,
        transport_mode: TransportMode | None = None,
        distance_km: Decimal | None = None,
    ) -> PayrollEmployeeProfile:
        if await self.session.get(User, user_id) is None:
            raise NotFoundError("User", user_id)
        result = await self.session.execute(
            select(PayrollEmployeeProfile).where(PayrollEmployeeProfile.user_id == user_id)
        )
        profile = result.scalar_one_or_none()
        if profile is None:
            profile = PayrollEmployeeProfile(user_id=user_id)
            self.session.add(profile)
        profile.transport_mode = transport_mode.value if transport_mode else None
        profile.distance_km = distance_km
        await self.session.flush()
        return profile

    async def add_salary_revision(
        self,
        user_id: UUID,
        effective_from: date,
        lines: Mapping[str, Decimal],
        note: str | None = None,
    ) -> PayrollSalaryRevision:
        """Record an effective-dated salary structure; head codes must exist."""
        result = await self.session.execute(
            select(PayrollEmployeeProfile).where(PayrollEmployeeProfile.user_id == user_id)
        )
        profile = result.scalar_one_or_none()
        if profile is None:
            raise NotFoundError("Employee profile for user", user_id)

        codes = {code.strip().upper() for code in lines}
        heads = await self.session.execute(
            select(PayrollSalaryHead.code).where(PayrollSalaryHead.code.in_(codes))
        )
        missing = codes - set(heads.scalars().all())
        if missing:
            raise ValidationError(f"Unknown salary heads: {', '.join(sorted(missing))}")

        revision = PayrollSalaryRevision(
            employee_profile_id=profile.employee_profile_id,
            effective_from=effective_from,
            note=note,
        )
        revision.lines = [
            PayrollSalaryRevisionLine(salary_head_code=code.strip().upper(), amount=amount)
            for code, amount in sorted(lines.items())
        ]
        self.session.add(revision)
        await self.session.flush()
        return revision

    # ===== Defaults =====

    async def ensure_defaults(self, today: date | None = None) -> None:
        """Seed system salary heads, the default financial year and default travel tiers.

        Idempotent: existing heads are refreshed, an existing default year keeps
        its brackets, and tiers are only seeded when none exist.
        """
        for head in SYSTEM_SALARY_HEADS:
            await self.upsert_salary_head(
                head.code, head.name, head.type, is_taxable=head.is_taxable, is_system=True
            )

        result = await self.session.execute(
            select(PayrollFinancialYear)
            .where(PayrollFinancialYear.label == DEFAULT_FINANCIAL_YEAR_LABEL)
            .options(selectinload(PayrollFinancialYear.tax_brackets))
        )
        year = result.scalar_one_or_none()
        if year is None:
            await self.create_financial_year(
                DEFAULT_FINANCIAL_YEAR_LABEL,
                DEFAULT_FINANCIAL_YEAR_START,
                DEFAULT_FINANCIAL_YEAR_END,
                DEFAULT_TAX_BRACKETS,
                activate=True,
            )
        elif not year.tax_brackets:
            year.tax_brackets = [
                PayrollTaxBracket(
                    income_from=b.income_from,
                    income_to=b.income_to,
                    fixed_tax=b.fixed_tax,
                    tax_rate=b.tax_rate,
                    order_index=index + 1,
                )
                for index, b in enumerate(DEFAULT_TAX_BRACKETS)
            ]

        tier_count = await self.session.execute(select(PayrollTravelAllowanceTier.travel_tier_id).limit(1))
        if tier_count.first() is None:
            effective_from = today or date.today()
            self.session.add_all(
                PayrollTravelAllowanceTier(
                    transport_mode=mode.value,
                    min_km=min_km,
                    max_km=max_km,
                    monthly_rate=rate,
                    effective_from=effective_from,
                    effective_to=None,
                    is_active=True,
                )
                for mode, min_km, max_km, rate in DEFAULT_TRAVEL_TIERS
            )
        await self.session.flush()
        logger.info("Payroll master data defaults ensured")
