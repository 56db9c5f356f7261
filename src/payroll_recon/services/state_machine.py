"""Payroll period state machine with transition validation."""

from __future__ import annotations

from typing import TYPE_CHECKING

from payroll_recon.exceptions import InputsFrozenError, PayrollError, PeriodLockedError
from payroll_recon.models.enums import PeriodStatus

if TYPE_CHECKING:
    from payroll_recon.models import PayrollPeriod


class InvalidTransitionError(PayrollError):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class PeriodStateMachine:
    """State machine for payroll period status transitions.

    Allowed transitions:
    - draft → calculated (recompute)
    - calculated → calculated (recompute again)
    - calculated → draft (input edited after calculation)
    - calculated → approved
    - approved → sending
    - sending → sent | partial | failed
    - partial | failed → sending (resend failed receipts only)
    - approved | sent | partial | failed → locked
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        PeriodStatus.DRAFT: [PeriodStatus.CALCULATED],
        PeriodStatus.CALCULATED: [
            PeriodStatus.CALCULATED,
            PeriodStatus.DRAFT,
            PeriodStatus.APPROVED,
        ],
        PeriodStatus.APPROVED: [PeriodStatus.SENDING, PeriodStatus.LOCKED],
        PeriodStatus.SENDING: [PeriodStatus.SENT, PeriodStatus.PARTIAL, PeriodStatus.FAILED],
        PeriodStatus.SENT: [PeriodStatus.LOCKED],
        PeriodStatus.PARTIAL: [PeriodStatus.SENDING, PeriodStatus.LOCKED],
        PeriodStatus.FAILED: [PeriodStatus.SENDING, PeriodStatus.LOCKED],
        PeriodStatus.LOCKED: [],  # Terminal state
    }

    # Statuses where recalculation is allowed
    CALCULATION_ALLOWED = {
        PeriodStatus.DRAFT,
        PeriodStatus.CALCULATED,
    }

    # Statuses where inputs, expenses and attendance can be modified
    INPUTS_MUTABLE = {
        PeriodStatus.DRAFT,
        PeriodStatus.CALCULATED,
    }

    # Statuses from which a receipt send batch may start
    SEND_ALLOWED = {PeriodStatus.APPROVED}
    RESEND_ALLOWED = {PeriodStatus.PARTIAL, PeriodStatus.FAILED}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def can_calculate(cls, status: str) -> bool:
        """Check if recalculation is allowed in this status."""
        return status in cls.CALCULATION_ALLOWED

    @classmethod
    def can_modify_inputs(cls, status: str) -> bool:
        """Check if inputs (values, expenses, attendance) can be modified."""
        return status in cls.INPUTS_MUTABLE

    @classmethod
    def can_send(cls, status: str, resend_failed_only: bool = False) -> bool:
        """Check if a receipt send batch may start from this status."""
        if status in cls.SEND_ALLOWED:
            return True
        return resend_failed_only and status in cls.RESEND_ALLOWED

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return not cls.VALID_TRANSITIONS.get(status)

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])

    @classmethod
    def send_outcome(cls, succeeded: int, failed: int) -> PeriodStatus:
        """Final period status once a send batch resolves."""
        if succeeded == 0:
            return PeriodStatus.FAILED
        if failed > 0:
            return PeriodStatus.PARTIAL
        return PeriodStatus.SENT

    @classmethod
    def ensure_inputs_mutable(cls, period: PayrollPeriod, action: str = "modify inputs") -> None:
        """Raise if the period's inputs are frozen.

        LOCKED raises PeriodLockedError; approved or in-flight statuses raise
        InputsFrozenError.
        """
        if period.status == PeriodStatus.LOCKED:
            raise PeriodLockedError(period.period_id, period.status, action)
        if not cls.can_modify_inputs(period.status):
            raise InputsFrozenError(period.period_id, period.status, action)

    @classmethod
    def ensure_can_calculate(cls, period: PayrollPeriod) -> None:
        if period.status == PeriodStatus.LOCKED:
            raise PeriodLockedError(period.period_id, period.status, "recalculate")
        if not cls.can_calculate(period.status):
            raise InvalidTransitionError(
                period.status,
                PeriodStatus.CALCULATED,
                "recalculation is only allowed from DRAFT or CALCULATED",
            )
