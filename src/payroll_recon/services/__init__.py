"""Payroll reconciliation services."""

from payroll_recon.services.identity_resolver import IdentityResolver, MappingSyncSummary
from payroll_recon.services.input_service import InputService, IngestSummary
from payroll_recon.services.master_data import MasterDataService
from payroll_recon.services.period_service import CarryForwardResult, PeriodService
from payroll_recon.services.receipt_dispatch import ReceiptDispatchService, SendReceiptsResult
from payroll_recon.services.recalculation_service import RecalculateResult, RecalculationService
from payroll_recon.services.signing import SignatureProvider, StubSignatureProvider
from payroll_recon.services.state_machine import InvalidTransitionError, PeriodStateMachine

__all__ = [
    "CarryForwardResult",
    "IdentityResolver",
    "IngestSummary",
    "InputService",
    "InvalidTransitionError",
    "MappingSyncSummary",
    "MasterDataService",
    "PeriodService",
    "PeriodStateMachine",
    "ReceiptDispatchService",
    "RecalculateResult",
    "RecalculationService",
    "SendReceiptsResult",
    "SignatureProvider",
    "StubSignatureProvider",
]
