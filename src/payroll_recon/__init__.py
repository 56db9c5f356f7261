"""Monthly payroll computation and net-vs-paid reconciliation."""

__version__ = "1.0.0"
