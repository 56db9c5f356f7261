"""Pydantic schemas for upstream input contracts and command payloads."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from payroll_recon.models.enums import AttendanceStatus, TransportMode


def _upper_key(value: str) -> str:
    key = value.strip().upper()
    if not key:
        raise ValueError("component key must not be blank")
    return key


class InputTuple(BaseModel):
    """One raw input value produced by a workbook/CSV parser."""

    payroll_name: str = Field(..., min_length=1)
    component_key: str
    amount: Decimal
    source_sheet: str | None = None
    source_cell: str | None = None
    source_priority: int = 0

    @field_validator("payroll_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("payroll name must not be blank")
        return v

    @field_validator("component_key")
    @classmethod
    def upper_key(cls, v: str) -> str:
        return _upper_key(v)


class ExpenseTuple(BaseModel):
    """One itemized expense line."""

    payroll_name: str = Field(..., min_length=1)
    category_key: str
    description: str | None = None
    amount: Decimal
    sheet_name: str | None = None
    row_ref: str | None = None

    @field_validator("category_key")
    @classmethod
    def upper_category(cls, v: str) -> str:
        return _upper_key(v)


class ManualInputUpdate(BaseModel):
    """A human edit of one component; stored as an override."""

    payroll_name: str = Field(..., min_length=1)
    component_key: str
    amount: Decimal
    note: str | None = None
    user_id: UUID | None = None

    @field_validator("component_key")
    @classmethod
    def upper_key(cls, v: str) -> str:
        return _upper_key(v)


class AttendanceMark(BaseModel):
    user_id: UUID
    attendance_date: date
    status: AttendanceStatus


class TravelTierCreate(BaseModel):
    transport_mode: TransportMode
    min_km: Decimal = Field(..., ge=0)
    max_km: Decimal | None = Field(None, ge=0)
    monthly_rate: Decimal = Field(..., ge=0)
    effective_from: date
    effective_to: date | None = None


class TaxBracketCreate(BaseModel):
    income_from: Decimal = Field(..., ge=0)
    income_to: Decimal | None = None
    fixed_tax: Decimal = Decimal("0")
    tax_rate: Decimal = Field(..., ge=0, le=1)


class ApproveRequest(BaseModel):
    """Request to approve a calculated period."""

    actor_id: UUID | None = None
    comment: str | None = None


class PeriodResponse(BaseModel):
    """Period as exposed to CLI/JSON consumers."""

    model_config = ConfigDict(from_attributes=True)

    period_id: UUID
    label: str
    period_start: date
    period_end: date
    status: str
    source_type: str
