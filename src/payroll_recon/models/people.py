"""Employee identity, profile, attendance and salary revision models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_recon.models.base import JSONType, Base, TimestampMixin
from payroll_recon.models.enums import (
    AttendanceStatus,
    IdentityStatus,
    TransportMode,
    check_in,
)


class User(Base, TimestampMixin):
    """Canonical employee record."""

    __tablename__ = "app_user"

    user_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str | None] = mapped_column(String)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)


class PayrollIdentityMapping(Base, TimestampMixin):
    """Link between a normalized payroll-sheet name and a canonical user."""

    __tablename__ = "payroll_identity_mapping"

    mapping_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    normalized_payroll_name: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    display_payroll_name: Mapped[str] = mapped_column(String, nullable=False)
    user_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("app_user.user_id", ondelete="SET NULL")
    )
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=IdentityStatus.UNRESOLVED.value
    )
    candidate_user_ids: Mapped[list[Any] | None] = mapped_column(JSONType)
    notes: Mapped[str | None] = mapped_column(Text)
    last_matched_at: Mapped[datetime | None] = mapped_column()

    __table_args__ = (
        CheckConstraint(check_in("status", IdentityStatus), name="payroll_identity_status_check"),
    )


class PayrollEmployeeProfile(Base, TimestampMixin):
    """Payroll-specific attributes of an employee."""

    __tablename__ = "payroll_employee_profile"

    employee_profile_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("app_user.user_id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    distance_km: Mapped[Decimal | None] = mapped_column(Numeric(8, 2))
    transport_mode: Mapped[str | None] = mapped_column(String)

    __table_args__ = (
        CheckConstraint(
            "transport_mode IS NULL OR " + check_in("transport_mode", TransportMode),
            name="payroll_employee_profile_transport_check",
        ),
    )

    revisions: Mapped[list[PayrollSalaryRevision]] = relationship(
        back_populates="employee_profile",
        order_by="PayrollSalaryRevision.effective_from.desc()",
    )


class PayrollAttendanceEntry(Base, TimestampMixin):
    """Daily attendance status used to prorate travel allowance."""

    __tablename__ = "payroll_attendance_entry"

    attendance_entry_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    period_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_period.period_id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("app_user.user_id", ondelete="CASCADE"),
        nullable=False,
    )
    attendance_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "period_id", "user_id", "attendance_date", name="payroll_attendance_entry_day_unique"
        ),
        CheckConstraint(check_in("status", AttendanceStatus), name="payroll_attendance_status_check"),
    )


class PayrollSalaryRevision(Base, TimestampMixin):
    """Effective-dated salary structure for an employee."""

    __tablename__ = "payroll_salary_revision"

    salary_revision_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_profile_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_employee_profile.employee_profile_id", ondelete="CASCADE"),
        nullable=False,
    )
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    note: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint(
            "employee_profile_id", "effective_from", name="payroll_salary_revision_effective_unique"
        ),
    )

    employee_profile: Mapped[PayrollEmployeeProfile] = relationship(back_populates="revisions")
    lines: Mapped[list[PayrollSalaryRevisionLine]] = relationship(
        back_populates="revision",
        cascade="all, delete-orphan",
    )


class PayrollSalaryRevisionLine(Base):
    """Amount for one salary head within a revision."""

    __tablename__ = "payroll_salary_revision_line"

    salary_revision_line_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    salary_revision_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_salary_revision.salary_revision_id", ondelete="CASCADE"),
        nullable=False,
    )
    salary_head_code: Mapped[str] = mapped_column(
        ForeignKey("payroll_salary_head.code", ondelete="RESTRICT"),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "salary_revision_id", "salary_head_code", name="payroll_salary_revision_line_head_unique"
        ),
    )

    revision: Mapped[PayrollSalaryRevision] = relationship(back_populates="lines")
