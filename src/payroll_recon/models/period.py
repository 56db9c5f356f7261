"""Payroll period, input, computed value, receipt and audit models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_recon.models.base import JSONType, Base, TimestampMixin
from payroll_recon.models.enums import (
    PeriodSourceType,
    PeriodStatus,
    ReceiptStatus,
    SourceMethod,
    check_in,
)

if TYPE_CHECKING:
    from payroll_recon.models.people import User


class PayrollPeriod(Base, TimestampMixin):
    """One calendar month of payroll."""

    __tablename__ = "payroll_period"

    period_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    label: Mapped[str] = mapped_column(String, nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=PeriodStatus.DRAFT.value
    )
    source_type: Mapped[str] = mapped_column(
        String, nullable=False, default=PeriodSourceType.MANUAL.value
    )
    summary_json: Mapped[dict[str, Any] | None] = mapped_column(JSONType)
    approved_by_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("app_user.user_id", ondelete="SET NULL")
    )
    approved_at: Mapped[datetime | None] = mapped_column()

    __table_args__ = (
        UniqueConstraint("period_start", name="payroll_period_start_unique"),
        CheckConstraint(check_in("status", PeriodStatus), name="payroll_period_status_check"),
        CheckConstraint(
            check_in("source_type", PeriodSourceType), name="payroll_period_source_type_check"
        ),
        CheckConstraint("period_end >= period_start", name="payroll_period_dates_check"),
    )


class PayrollInputValue(Base, TimestampMixin):
    """A single pay component amount for one payroll name in a period."""

    __tablename__ = "payroll_input_value"

    input_value_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    period_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_period.period_id", ondelete="CASCADE"),
        nullable=False,
    )
    payroll_name: Mapped[str] = mapped_column(String, nullable=False)
    user_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("app_user.user_id", ondelete="SET NULL")
    )
    component_key: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    source_sheet: Mapped[str | None] = mapped_column(String)
    source_cell: Mapped[str | None] = mapped_column(String)
    source_method: Mapped[str] = mapped_column(
        String, nullable=False, default=SourceMethod.MANUAL.value
    )
    is_override: Mapped[bool] = mapped_column(nullable=False, default=False)
    note: Mapped[str | None] = mapped_column(Text)
    provenance_json: Mapped[dict[str, Any] | None] = mapped_column(JSONType)

    __table_args__ = (
        UniqueConstraint(
            "period_id",
            "payroll_name",
            "component_key",
            name="payroll_input_value_period_name_key_unique",
        ),
        CheckConstraint(
            check_in("source_method", SourceMethod), name="payroll_input_value_source_check"
        ),
    )


class PayrollExpenseEntry(Base, TimestampMixin):
    """Itemized expense line listed on a receipt."""

    __tablename__ = "payroll_expense_entry"

    expense_entry_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    period_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_period.period_id", ondelete="CASCADE"),
        nullable=False,
    )
    payroll_name: Mapped[str] = mapped_column(String, nullable=False)
    user_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("app_user.user_id", ondelete="SET NULL")
    )
    category_key: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    sheet_name: Mapped[str | None] = mapped_column(String)
    row_ref: Mapped[str | None] = mapped_column(String)
    entered_by_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("app_user.user_id", ondelete="SET NULL")
    )

    __table_args__ = (Index("payroll_expense_entry_period_idx", "period_id", "payroll_name"),)


class PayrollComputedValue(Base, TimestampMixin):
    """One computed metric for one payroll name, replaced on every recompute."""

    __tablename__ = "payroll_computed_value"

    computed_value_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    period_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_period.period_id", ondelete="CASCADE"),
        nullable=False,
    )
    payroll_name: Mapped[str] = mapped_column(String, nullable=False)
    user_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("app_user.user_id", ondelete="SET NULL")
    )
    metric_key: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    formula_key: Mapped[str] = mapped_column(String, nullable=False)
    formula_version: Mapped[str] = mapped_column(String, nullable=False)
    lineage_json: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "period_id",
            "payroll_name",
            "metric_key",
            name="payroll_computed_value_period_name_metric_unique",
        ),
    )


class PayrollReceipt(Base, TimestampMixin):
    """Signable pay receipt snapshot for one payroll name."""

    __tablename__ = "payroll_receipt"

    receipt_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    period_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_period.period_id", ondelete="CASCADE"),
        nullable=False,
    )
    payroll_name: Mapped[str] = mapped_column(String, nullable=False)
    user_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("app_user.user_id", ondelete="SET NULL")
    )
    receipt_json: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=ReceiptStatus.READY.value
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_error: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint("period_id", "payroll_name", name="payroll_receipt_period_name_unique"),
        CheckConstraint(check_in("status", ReceiptStatus), name="payroll_receipt_status_check"),
    )

    user: Mapped[User | None] = relationship(lazy="raise")


class PayrollReceiptDispatch(Base, TimestampMixin):
    """One attempt to send a receipt to the signing provider."""

    __tablename__ = "payroll_receipt_dispatch"

    dispatch_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    receipt_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_receipt.receipt_id", ondelete="CASCADE"),
        nullable=False,
    )
    external_request_id: Mapped[str | None] = mapped_column(String)
    recipient_email: Mapped[str | None] = mapped_column(String)
    provider_status: Mapped[str] = mapped_column(String, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text)
    sent_at: Mapped[datetime | None] = mapped_column()


class PayrollApprovalEvent(Base, TimestampMixin):
    """Audit record of a human-driven period status change."""

    __tablename__ = "payroll_approval_event"

    approval_event_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    period_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_period.period_id", ondelete="CASCADE"),
        nullable=False,
    )
    actor_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("app_user.user_id", ondelete="SET NULL")
    )
    from_status: Mapped[str] = mapped_column(String, nullable=False)
    to_status: Mapped[str] = mapped_column(String, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text)
