"""Tax, travel, holiday and salary-head master data models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_recon.models.base import Base, TimestampMixin
from payroll_recon.models.enums import SalaryHeadType, TransportMode, check_in


class PayrollFinancialYear(Base, TimestampMixin):
    """Financial year owning a set of progressive tax brackets."""

    __tablename__ = "payroll_financial_year"

    financial_year_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    label: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=False)

    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="payroll_financial_year_dates_check"),
    )

    tax_brackets: Mapped[list[PayrollTaxBracket]] = relationship(
        back_populates="financial_year",
        order_by="PayrollTaxBracket.order_index",
        cascade="all, delete-orphan",
    )


class PayrollTaxBracket(Base):
    """One slab of an annual progressive tax table."""

    __tablename__ = "payroll_tax_bracket"

    tax_bracket_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    financial_year_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_financial_year.financial_year_id", ondelete="CASCADE"),
        nullable=False,
    )
    income_from: Mapped[Decimal] = mapped_column(nullable=False)
    income_to: Mapped[Decimal | None] = mapped_column()
    fixed_tax: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(7, 5), nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "financial_year_id", "order_index", name="payroll_tax_bracket_order_unique"
        ),
        CheckConstraint("tax_rate >= 0 AND tax_rate <= 1", name="payroll_tax_bracket_rate_check"),
    )

    financial_year: Mapped[PayrollFinancialYear] = relationship(back_populates="tax_brackets")


class PayrollTravelAllowanceTier(Base, TimestampMixin):
    """Monthly travel allowance for a transport mode and distance band."""

    __tablename__ = "payroll_travel_allowance_tier"

    travel_tier_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    transport_mode: Mapped[str] = mapped_column(String, nullable=False)
    min_km: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)
    max_km: Mapped[Decimal | None] = mapped_column(Numeric(8, 2))
    monthly_rate: Mapped[Decimal] = mapped_column(nullable=False)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            check_in("transport_mode", TransportMode), name="payroll_travel_tier_mode_check"
        ),
        CheckConstraint(
            "max_km IS NULL OR max_km >= min_km", name="payroll_travel_tier_band_check"
        ),
    )


class PayrollPublicHoliday(Base, TimestampMixin):
    """Configured non-working day."""

    __tablename__ = "payroll_public_holiday"

    holiday_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    holiday_date: Mapped[date] = mapped_column(Date, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String, nullable=False)


class PayrollSalaryHead(Base, TimestampMixin):
    """Catalog entry describing a pay component."""

    __tablename__ = "payroll_salary_head"

    code: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    is_taxable: Mapped[bool] = mapped_column(nullable=False, default=False)
    is_system: Mapped[bool] = mapped_column(nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(check_in("type", SalaryHeadType), name="payroll_salary_head_type_check"),
    )
