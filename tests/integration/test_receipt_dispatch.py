"""Receipt dispatch integration tests with the stub signing provider."""

from uuid import UUID

import pytest
from sqlalchemy import select

from payroll_recon.exceptions import ValidationError
from payroll_recon.models import (
    PayrollPeriod,
    PayrollReceipt,
    PayrollReceiptDispatch,
    PeriodStatus,
    ReceiptStatus,
)
from payroll_recon.services.receipt_dispatch import ReceiptDispatchService, map_provider_status
from payroll_recon.services.signing import StubSignatureProvider
from payroll_recon.services.state_machine import InvalidTransitionError
from tests.conftest import create_period, create_user


async def approved_period_with_receipts(session, recipients, status=PeriodStatus.APPROVED):
    """Period with one READY receipt per (payroll name, email or None)."""
    period = await create_period(session, 2026, 2, status=status)
    for name, email in recipients:
        user = await create_user(session, name, email) if email is not None else None
        session.add(
            PayrollReceipt(
                period_id=period.period_id,
                payroll_name=name,
                user_id=user.user_id if user else None,
                receipt_json={"payrollName": name, "net": {"netSalary": "1000.00"}},
                status=ReceiptStatus.READY.value,
            )
        )
    await session.commit()
    return period


async def receipt_statuses(session_factory, period_id) -> dict[str, str]:
    async with session_factory() as session:
        result = await session.execute(
            select(PayrollReceipt.payroll_name, PayrollReceipt.status).where(
                PayrollReceipt.period_id == period_id
            )
        )
        return dict(result.all())


class TestMapProviderStatus:
    def test_mapping(self):
        assert map_provider_status("completed") == ReceiptStatus.COMPLETED
        assert map_provider_status("SENT") == ReceiptStatus.SENT
        assert map_provider_status("delivered") == ReceiptStatus.SENT
        assert map_provider_status("created") == ReceiptStatus.ENVELOPE_CREATED
        assert map_provider_status("") == ReceiptStatus.ENVELOPE_CREATED


class TestSendReceipts:
    async def test_all_sent(self, session, session_factory):
        period = await approved_period_with_receipts(
            session, [("Ali", "ali@example.com"), ("Sara", "sara@example.com")]
        )
        provider = StubSignatureProvider()

        result = await ReceiptDispatchService(session_factory, provider, concurrency=2).send_receipts(
            period.period_id
        )

        assert result.period_status == PeriodStatus.SENT
        assert (result.attempted, result.succeeded, result.failed) == (2, 2, 0)
        assert sorted(r.recipient_email for r in provider.sent) == ["ali@example.com", "sara@example.com"]
        assert provider.sent[0].subject == "Salary receipt - Payroll 02/2026"
        assert await receipt_statuses(session_factory, period.period_id) == {"Ali": "SENT", "Sara": "SENT"}

        async with session_factory() as check:
            dispatches = (await check.execute(select(PayrollReceiptDispatch))).scalars().all()
        assert len(dispatches) == 2
        assert all(d.external_request_id.startswith("stub-") for d in dispatches)

    async def test_partial_failure_then_resend_failed_only(self, session, session_factory):
        period = await approved_period_with_receipts(
            session, [("Ali", "ali@example.com"), ("Sara", "sara@example.com")]
        )

        failing = StubSignatureProvider(fail_for={"sara@example.com"})
        first = await ReceiptDispatchService(session_factory, failing).send_receipts(period.period_id)

        assert first.period_status == PeriodStatus.PARTIAL
        assert first.failed == 1
        failed_outcome = next(o for o in first.outcomes if o.payroll_name == "Sara")
        assert "Recipient rejected" in failed_outcome.error
        assert await receipt_statuses(session_factory, period.period_id) == {"Ali": "SENT", "Sara": "FAILED"}

        healthy = StubSignatureProvider(status="completed")
        retry = await ReceiptDispatchService(session_factory, healthy).send_receipts(
            period.period_id, resend_failed_only=True
        )

        assert retry.attempted == 1
        assert [r.recipient_email for r in healthy.sent] == ["sara@example.com"]
        assert retry.period_status == PeriodStatus.SENT
        assert await receipt_statuses(session_factory, period.period_id) == {
            "Ali": "SENT",
            "Sara": "COMPLETED",
        }

    async def test_missing_email_fails_receipt(self, session, session_factory):
        period = await approved_period_with_receipts(
            session, [("Ali", "ali@example.com"), ("Unknown Person", None)]
        )
        provider = StubSignatureProvider()

        result = await ReceiptDispatchService(session_factory, provider).send_receipts(period.period_id)

        assert result.period_status == PeriodStatus.PARTIAL
        assert len(provider.sent) == 1
        statuses = await receipt_statuses(session_factory, period.period_id)
        assert statuses["Unknown Person"] == "FAILED"

    async def test_all_failed(self, session, session_factory):
        period = await approved_period_with_receipts(session, [("Ali", "ali@example.com")])
        provider = StubSignatureProvider(fail_for={"ali@example.com"})

        result = await ReceiptDispatchService(session_factory, provider).send_receipts(period.period_id)

        assert result.period_status == PeriodStatus.FAILED
        assert result.succeeded == 0

    async def test_not_approved(self, session, session_factory):
        period = await approved_period_with_receipts(
            session, [("Ali", "ali@example.com")], status=PeriodStatus.CALCULATED
        )
        with pytest.raises(InvalidTransitionError):
            await ReceiptDispatchService(session_factory, StubSignatureProvider()).send_receipts(
                period.period_id
            )

    async def test_partial_requires_failed_only_filter(self, session, session_factory):
        period = await approved_period_with_receipts(
            session, [("Ali", "ali@example.com")], status=PeriodStatus.PARTIAL
        )
        with pytest.raises(InvalidTransitionError):
            await ReceiptDispatchService(session_factory, StubSignatureProvider()).send_receipts(
                period.period_id
            )

    async def test_nothing_to_resend(self, session, session_factory):
        period = await approved_period_with_receipts(
            session, [("Ali", "ali@example.com")], status=PeriodStatus.PARTIAL
        )
        with pytest.raises(ValidationError):
            await ReceiptDispatchService(session_factory, StubSignatureProvider()).send_receipts(
                period.period_id, resend_failed_only=True
            )

        async with session_factory() as check:
            stored = await check.get(PayrollPeriod, period.period_id)
            assert stored.status == PeriodStatus.PARTIAL.value


async def set_receipt_statuses(session, period_id, statuses: dict[str, ReceiptStatus]) -> dict[str, UUID]:
    """Force receipt statuses by payroll name; returns receipt ids by name."""
    result = await session.execute(select(PayrollReceipt).where(PayrollReceipt.period_id == period_id))
    ids = {}
    for receipt in result.scalars().all():
        ids[receipt.payroll_name] = receipt.receipt_id
        if receipt.payroll_name in statuses:
            receipt.status = statuses[receipt.payroll_name].value
    await session.commit()
    return ids


class TestResendFilter:
    async def test_explicit_ids_still_limited_to_failed(self, session, session_factory):
        period = await approved_period_with_receipts(
            session,
            [("Ali", "ali@example.com"), ("Sara", "sara@example.com")],
            status=PeriodStatus.PARTIAL,
        )
        ids = await set_receipt_statuses(
            session, period.period_id, {"Ali": ReceiptStatus.SENT, "Sara": ReceiptStatus.FAILED}
        )
        provider = StubSignatureProvider()

        result = await ReceiptDispatchService(session_factory, provider).send_receipts(
            period.period_id, receipt_ids=[ids["Ali"], ids["Sara"]], resend_failed_only=True
        )

        assert result.attempted == 1
        assert [r.recipient_email for r in provider.sent] == ["sara@example.com"]
        assert result.period_status == PeriodStatus.SENT


class OutcomeWriteFailure(ReceiptDispatchService):
    """Dispatch service whose outcome write fails for selected payroll names."""

    def __init__(self, *args, fail_names=(), **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_names = set(fail_names)

    async def _record_outcome(self, job, outcome):
        if job.payroll_name in self.fail_names:
            raise RuntimeError("database went away")
        await super()._record_outcome(job, outcome)


class TestOutcomeWriteFailure:
    async def test_period_leaves_sending_and_can_be_resent(self, session, session_factory):
        period = await approved_period_with_receipts(
            session, [("Ali", "ali@example.com"), ("Sara", "sara@example.com")]
        )

        service = OutcomeWriteFailure(session_factory, StubSignatureProvider(), fail_names={"Sara"})
        with pytest.raises(RuntimeError):
            await service.send_receipts(period.period_id)

        async with session_factory() as check:
            stored = await check.get(PayrollPeriod, period.period_id)
            assert stored.status == PeriodStatus.PARTIAL.value
        assert await receipt_statuses(session_factory, period.period_id) == {"Ali": "SENT", "Sara": "FAILED"}

        healthy = StubSignatureProvider()
        retry = await ReceiptDispatchService(session_factory, healthy).send_receipts(
            period.period_id, resend_failed_only=True
        )
        assert [r.recipient_email for r in healthy.sent] == ["sara@example.com"]
        assert retry.period_status == PeriodStatus.SENT

    async def test_every_write_failing_marks_period_failed(self, session, session_factory):
        period = await approved_period_with_receipts(session, [("Ali", "ali@example.com")])

        service = OutcomeWriteFailure(session_factory, StubSignatureProvider(), fail_names={"Ali"})
        with pytest.raises(RuntimeError):
            await service.send_receipts(period.period_id)

        async with session_factory() as check:
            stored = await check.get(PayrollPeriod, period.period_id)
            assert stored.status == PeriodStatus.FAILED.value
