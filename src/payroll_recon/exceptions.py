"""Exception hierarchy for payroll computation and period operations."""

from __future__ import annotations


class PayrollError(Exception):
    """Base class for payroll engine errors."""


class NotFoundError(PayrollError):
    """Raised when a period, user, financial year or mapping does not exist."""

    def __init__(self, entity: str, identifier: object):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} not found: {identifier}")


class InputsFrozenError(PayrollError):
    """Raised when inputs are mutated in a status that does not allow it."""

    def __init__(self, period_id: object, status: str, action: str = "modify inputs"):
        self.period_id = period_id
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} for period {period_id} in status '{status}'")


class PeriodLockedError(InputsFrozenError):
    """Raised on any mutation of a LOCKED period."""


class ValidationError(PayrollError):
    """Raised for invalid master data or malformed inputs."""
