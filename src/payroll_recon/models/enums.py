"""Enumerated column values shared by the payroll models."""

from __future__ import annotations

from enum import Enum


class PeriodStatus(str, Enum):
    """Payroll period status values."""

    DRAFT = "DRAFT"
    CALCULATED = "CALCULATED"
    APPROVED = "APPROVED"
    SENDING = "SENDING"
    SENT = "SENT"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"
    LOCKED = "LOCKED"


class PeriodSourceType(str, Enum):
    """Where a period's inputs originally came from."""

    WORKBOOK = "WORKBOOK"
    MANUAL = "MANUAL"
    CARRY_FORWARD = "CARRY_FORWARD"


class SourceMethod(str, Enum):
    """How an individual input value was written."""

    WORKBOOK = "WORKBOOK"
    MANUAL = "MANUAL"
    CARRY_FORWARD = "CARRY_FORWARD"
    ENGINE = "ENGINE"


class ReceiptStatus(str, Enum):
    READY = "READY"
    ENVELOPE_CREATED = "ENVELOPE_CREATED"
    SENT = "SENT"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class IdentityStatus(str, Enum):
    AUTO_MATCHED = "AUTO_MATCHED"
    MANUAL_MATCHED = "MANUAL_MATCHED"
    AMBIGUOUS = "AMBIGUOUS"
    UNRESOLVED = "UNRESOLVED"


class TransportMode(str, Enum):
    BIKE = "BIKE"
    CAR = "CAR"
    PUBLIC_TRANSPORT = "PUBLIC_TRANSPORT"


class AttendanceStatus(str, Enum):
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"
    PUBLIC_HOLIDAY = "PUBLIC_HOLIDAY"


class SalaryHeadType(str, Enum):
    EARNING = "EARNING"
    DEDUCTION = "DEDUCTION"


def check_in(column: str, enum_cls: type[Enum]) -> str:
    """Render a CHECK constraint body restricting a column to enum values."""
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"
