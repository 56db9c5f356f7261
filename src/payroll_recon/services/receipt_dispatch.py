"""Sending approved receipts to the signing provider."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payroll_recon.config import get_settings
from payroll_recon.exceptions import ValidationError
from payroll_recon.models import (
    PayrollReceipt,
    PayrollReceiptDispatch,
    PeriodStatus,
    ReceiptStatus,
)
from payroll_recon.repositories.period_repository import PeriodRepository, utcnow
from payroll_recon.services.signing import SignatureProvider, SignatureRequest, SignatureResult
from payroll_recon.services.state_machine import InvalidTransitionError, PeriodStateMachine

logger = logging.getLogger(__name__)

# Receipt statuses that count as successfully dispatched.
_DISPATCHED = {
    ReceiptStatus.ENVELOPE_CREATED.value,
    ReceiptStatus.SENT.value,
    ReceiptStatus.COMPLETED.value,
}


def map_provider_status(status: str) -> ReceiptStatus:
    """Map a provider envelope status onto a receipt status."""
    normalized = (status or "").lower()
    if normalized == "completed":
        return ReceiptStatus.COMPLETED
    if normalized in ("sent", "delivered"):
        return ReceiptStatus.SENT
    return ReceiptStatus.ENVELOPE_CREATED


@dataclass(frozen=True)
class _ReceiptJob:
    receipt_id: UUID
    payroll_name: str
    recipient_email: str | None
    recipient_name: str
    receipt_json: dict[str, Any]


@dataclass
class DispatchOutcome:
    receipt_id: UUID
    payroll_name: str
    status: ReceiptStatus
    request_id: str | None = None
    error: str | None = None


@dataclass
class SendReceiptsResult:
    period_id: UUID
    period_status: PeriodStatus
    attempted: int
    succeeded: int
    failed: int
    outcomes: list[DispatchOutcome] = field(default_factory=list)


class ReceiptDispatchService:
    """Sends period receipts with bounded concurrency.

    The period moves to SENDING in its own transaction before any external
    call. Each receipt's outcome is then committed independently, so a failure
    never rolls back receipts already sent. Rerun with ``resend_failed_only``
    to retry FAILED receipts.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        provider: SignatureProvider,
        concurrency: int | None = None,
    ):
        self.session_factory = session_factory
        self.provider = provider
        self.concurrency = concurrency or get_settings().receipt_send_concurrency
        self._write_lock = asyncio.Lock()

    async def send_receipts(
        self,
        period_id: UUID,
        receipt_ids: Iterable[UUID] | None = None,
        resend_failed_only: bool = False,
    ) -> SendReceiptsResult:
        jobs, period_label = await self._start_batch(period_id, receipt_ids, resend_failed_only)
        logger.info("Sending %d receipts for period %s", len(jobs), period_label)

        semaphore = asyncio.Semaphore(self.concurrency)

        unrecorded: list[UUID] = []

        async def run(job: _ReceiptJob) -> DispatchOutcome:
            async with semaphore:
                outcome = await self._dispatch_one(job, period_label)
            try:
                await self._record_outcome(job, outcome)
            except Exception:
                logger.exception("Could not record send outcome for %s", job.payroll_name)
                unrecorded.append(job.receipt_id)
                raise
            return outcome

        # Every job settles before the period leaves SENDING.
        settled = await asyncio.gather(*(run(job) for job in jobs), return_exceptions=True)
        final_status = await self._finish_batch(period_id, unrecorded)
        errors = [s for s in settled if isinstance(s, BaseException)]
        if errors:
            raise errors[0]
        outcomes: list[DispatchOutcome] = list(settled)

        succeeded = sum(1 for o in outcomes if o.status != ReceiptStatus.FAILED)
        result = SendReceiptsResult(
            period_id=period_id,
            period_status=final_status,
            attempted=len(outcomes),
            succeeded=succeeded,
            failed=len(outcomes) - succeeded,
            outcomes=sorted(outcomes, key=lambda o: o.payroll_name),
        )
        logger.info(
            "Receipt batch for %s finished: %d sent, %d failed, period %s",
            period_label,
            result.succeeded,
            result.failed,
            final_status.value,
        )
        return result

    async def _start_batch(
        self,
        period_id: UUID,
        receipt_ids: Iterable[UUID] | None,
        resend_failed_only: bool,
    ) -> tuple[list[_ReceiptJob], str]:
        async with self.session_factory() as session:
            async with session.begin():
                repo = PeriodRepository(session)
                period = await repo.require_period(period_id)
                if not PeriodStateMachine.can_send(period.status, resend_failed_only):
                    raise InvalidTransitionError(
                        period.status,
                        PeriodStatus.SENDING,
                        "receipts can only be sent from APPROVED, "
                        "or resent from PARTIAL/FAILED with the failed-only filter",
                    )

                statuses: list[str] | None = None
                if resend_failed_only:
                    statuses = [ReceiptStatus.FAILED.value]
                elif receipt_ids is None:
                    statuses = [ReceiptStatus.READY.value, ReceiptStatus.FAILED.value]
                receipts = await repo.list_receipts(
                    period_id,
                    statuses=statuses,
                    receipt_ids=list(receipt_ids) if receipt_ids is not None else None,
                )
                if not receipts:
                    raise ValidationError(f"No receipts to send for period {period.label}")

                PeriodStateMachine.validate_transition(period.status, PeriodStatus.SENDING)
                period.status = PeriodStatus.SENDING.value

                jobs = [
                    _ReceiptJob(
                        receipt_id=r.receipt_id,
                        payroll_name=r.payroll_name,
                        recipient_email=r.user.email if r.user is not None else None,
                        recipient_name=r.user.name if r.user is not None else r.payroll_name,
                        receipt_json=dict(r.receipt_json),
                    )
                    for r in receipts
                ]
                return jobs, period.label

    async def _dispatch_one(self, job: _ReceiptJob, period_label: str) -> DispatchOutcome:
        if not job.recipient_email:
            return DispatchOutcome(
                receipt_id=job.receipt_id,
                payroll_name=job.payroll_name,
                status=ReceiptStatus.FAILED,
                error="No email on file for payroll name",
            )

        request = SignatureRequest(
            receipt_id=job.receipt_id,
            recipient_email=job.recipient_email,
            recipient_name=job.recipient_name,
            subject=f"Salary receipt - {period_label}",
            receipt_json=job.receipt_json,
        )
        try:
            result: SignatureResult = await self.provider.send_receipt(request)
        except Exception as exc:
            logger.exception("Failed to send receipt for %s", job.payroll_name)
            return DispatchOutcome(
                receipt_id=job.receipt_id,
                payroll_name=job.payroll_name,
                status=ReceiptStatus.FAILED,
                error=str(exc) or exc.__class__.__name__,
            )
        return DispatchOutcome(
            receipt_id=job.receipt_id,
            payroll_name=job.payroll_name,
            status=map_provider_status(result.status),
            request_id=result.request_id,
        )

    async def _record_outcome(self, job: _ReceiptJob, outcome: DispatchOutcome) -> None:
        """Commit one receipt's status and a dispatch record in its own transaction."""
        async with self._write_lock:
            async with self.session_factory() as session:
                async with session.begin():
                    receipt = await session.get(PayrollReceipt, job.receipt_id)
                    if receipt is not None:
                        receipt.status = outcome.status.value
                        receipt.last_error = outcome.error
                    session.add(
                        PayrollReceiptDispatch(
                            receipt_id=job.receipt_id,
                            external_request_id=outcome.request_id,
                            recipient_email=job.recipient_email,
                            provider_status=outcome.status.value,
                            error_message=outcome.error,
                            sent_at=utcnow() if outcome.status != ReceiptStatus.FAILED else None,
                        )
                    )

    async def _finish_batch(self, period_id: UUID, unrecorded: Iterable[UUID] = ()) -> PeriodStatus:
        """Stamp SENT, PARTIAL or FAILED from the status of all the period's receipts.

        Receipts whose outcome could not be recorded are marked FAILED first so a
        failed-only resend picks them up.
        """
        unrecorded = list(unrecorded)
        async with self.session_factory() as session:
            async with session.begin():
                if unrecorded:
                    await session.execute(
                        update(PayrollReceipt)
                        .where(PayrollReceipt.receipt_id.in_(unrecorded))
                        .values(
                            status=ReceiptStatus.FAILED.value,
                            last_error="Send outcome could not be recorded",
                        )
                    )
                repo = PeriodRepository(session)
                period = await repo.require_period(period_id)
                result = await session.execute(
                    select(PayrollReceipt.status, func.count())
                    .where(PayrollReceipt.period_id == period_id)
                    .group_by(PayrollReceipt.status)
                )
                counts = dict(result.all())
                succeeded = sum(n for status, n in counts.items() if status in _DISPATCHED)
                failed = counts.get(ReceiptStatus.FAILED.value, 0)

                final_status = PeriodStateMachine.send_outcome(succeeded, failed)
                PeriodStateMachine.validate_transition(period.status, final_status)
                period.status = final_status.value
                return final_status
