"""Data access layer."""

from payroll_recon.repositories.period_repository import PeriodRepository

__all__ = ["PeriodRepository"]
