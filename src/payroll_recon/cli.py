"""Payroll Command Line Interface.

Provides operational tools for:
- Schema creation and master-data seeding
- Period setup, input import and carry-forward
- Recalculation, approval and locking
- Identity mapping sync
- Receipt dispatch (stub provider)

Usage:
    payroll-recon init-db
    payroll-recon seed-defaults
    payroll-recon create-period --year 2026 --month 2
    payroll-recon ingest --period-id X --file inputs.json
    payroll-recon recalculate --period-id X --tolerance 1
    payroll-recon approve --period-id X --comment "checked"
    payroll-recon carry-forward --target-period-id Y [--base-period-id X]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from decimal import Decimal
from pathlib import Path
from typing import Any, Awaitable, Callable
from uuid import UUID

from pydantic import ValidationError as SchemaValidationError

from payroll_recon.config import get_settings
from payroll_recon.database import create_schema, get_session, init_db
from payroll_recon.exceptions import PayrollError
from payroll_recon.repositories.period_repository import PeriodRepository
from payroll_recon.schemas import ExpenseTuple, InputTuple, PeriodResponse
from payroll_recon.services.identity_resolver import IdentityResolver
from payroll_recon.services.input_service import InputService
from payroll_recon.services.master_data import MasterDataService
from payroll_recon.services.period_service import PeriodService
from payroll_recon.services.receipt_dispatch import ReceiptDispatchService
from payroll_recon.services.recalculation_service import RecalculationService
from payroll_recon.services.signing import StubSignatureProvider

logger = logging.getLogger(__name__)


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


def parse_decimal(s: str) -> Decimal:
    """Parse decimal string."""
    return Decimal(s)


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


class PayrollCli:
    """Payroll Command Line Interface."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="payroll-recon",
            description="Payroll computation and reconciliation tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        subparsers.add_parser("init-db", help="Create database tables")
        subparsers.add_parser(
            "seed-defaults",
            help="Seed system salary heads, default tax year and travel tiers",
        )

        create = subparsers.add_parser("create-period", help="Create a DRAFT monthly period")
        create.add_argument("--year", type=int, required=True)
        create.add_argument("--month", type=int, required=True)
        create.add_argument("--label", type=str, help="Display label (default: Payroll MM/YYYY)")

        ingest = subparsers.add_parser("ingest", help="Import parser output for a period")
        ingest.add_argument("--period-id", type=parse_uuid, required=True)
        ingest.add_argument(
            "--file",
            type=Path,
            required=True,
            help='JSON file with {"inputs": [...], "expenses": [...]}',
        )

        recalc = subparsers.add_parser("recalculate", help="Recompute a period")
        recalc.add_argument("--period-id", type=parse_uuid, required=True)
        recalc.add_argument(
            "--tolerance",
            type=parse_decimal,
            help="Net-vs-paid tolerance (default: DEFAULT_TOLERANCE)",
        )

        approve = subparsers.add_parser("approve", help="Approve a calculated period")
        approve.add_argument("--period-id", type=parse_uuid, required=True)
        approve.add_argument("--actor-id", type=parse_uuid)
        approve.add_argument("--comment", type=str)

        lock = subparsers.add_parser("lock", help="Lock a period permanently")
        lock.add_argument("--period-id", type=parse_uuid, required=True)
        lock.add_argument("--actor-id", type=parse_uuid)
        lock.add_argument("--comment", type=str)

        sync = subparsers.add_parser(
            "sync-identities",
            help="Match a period's payroll names against active users",
        )
        sync.add_argument("--period-id", type=parse_uuid, required=True)

        carry = subparsers.add_parser(
            "carry-forward",
            help="Copy inputs and expenses from one period into another",
        )
        carry.add_argument(
            "--base-period-id",
            type=parse_uuid,
            help="Period to copy from (default: the period before the target)",
        )
        carry.add_argument("--target-period-id", type=parse_uuid, required=True)
        carry.add_argument("--actor-id", type=parse_uuid)

        send = subparsers.add_parser(
            "send-receipts",
            help="Dispatch receipts through the stub signing provider",
        )
        send.add_argument("--period-id", type=parse_uuid, required=True)
        send.add_argument(
            "--resend-failed-only",
            action="store_true",
            help="Only retry receipts that previously failed",
        )

        show = subparsers.add_parser("show-period", help="Print a period and its summary")
        show.add_argument("--period-id", type=parse_uuid, required=True)

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        handlers: dict[str, Callable[[argparse.Namespace], Awaitable[int]]] = {
            "init-db": self._cmd_init_db,
            "seed-defaults": self._cmd_seed_defaults,
            "create-period": self._cmd_create_period,
            "ingest": self._cmd_ingest,
            "recalculate": self._cmd_recalculate,
            "approve": self._cmd_approve,
            "lock": self._cmd_lock,
            "sync-identities": self._cmd_sync_identities,
            "carry-forward": self._cmd_carry_forward,
            "send-receipts": self._cmd_send_receipts,
            "show-period": self._cmd_show_period,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        try:
            return asyncio.run(handler(parsed))
        except PayrollError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 2

    async def _cmd_init_db(self, args: argparse.Namespace) -> int:
        engine, _ = init_db()
        await create_schema(engine)
        print("Schema created.")
        return 0

    async def _cmd_seed_defaults(self, args: argparse.Namespace) -> int:
        async with get_session() as session:
            await MasterDataService(session).ensure_defaults()
        print("Defaults ensured.")
        return 0

    async def _cmd_create_period(self, args: argparse.Namespace) -> int:
        async with get_session() as session:
            period = await PeriodService(session).create_period(args.year, args.month, args.label)
            _emit(PeriodResponse.model_validate(period).model_dump(mode="json"))
        return 0

    async def _cmd_ingest(self, args: argparse.Namespace) -> int:
        try:
            raw = json.loads(args.file.read_text(encoding="utf-8"))
            inputs = [InputTuple.model_validate(item) for item in raw.get("inputs", [])]
            expenses = [ExpenseTuple.model_validate(item) for item in raw.get("expenses", [])]
        except (OSError, json.JSONDecodeError, SchemaValidationError) as e:
            print(f"ERROR: cannot read {args.file}: {e}", file=sys.stderr)
            return 1

        async with get_session() as session:
            summary = await InputService(session).ingest(args.period_id, inputs, expenses)
        _emit(
            {
                "received": summary.received,
                "written": summary.written,
                "skippedOverrides": summary.skipped_overrides,
                "duplicatesDropped": summary.duplicates_dropped,
                "expensesWritten": summary.expenses_written,
            }
        )
        return 0

    async def _cmd_recalculate(self, args: argparse.Namespace) -> int:
        _, factory = init_db()
        result = await RecalculationService(factory).recalculate_period(
            args.period_id, tolerance=args.tolerance
        )
        _emit(result.to_dict())
        return 0

    async def _cmd_approve(self, args: argparse.Namespace) -> int:
        async with get_session() as session:
            period = await PeriodService(session).approve_period(
                args.period_id, actor_id=args.actor_id, comment=args.comment
            )
            _emit(PeriodResponse.model_validate(period).model_dump(mode="json"))
        return 0

    async def _cmd_lock(self, args: argparse.Namespace) -> int:
        async with get_session() as session:
            period = await PeriodService(session).lock_period(
                args.period_id, actor_id=args.actor_id, comment=args.comment
            )
            _emit(PeriodResponse.model_validate(period).model_dump(mode="json"))
        return 0

    async def _cmd_sync_identities(self, args: argparse.Namespace) -> int:
        async with get_session() as session:
            repo = PeriodRepository(session)
            await repo.require_period(args.period_id)
            names = {row.payroll_name for row in await repo.list_input_values(args.period_id)}
            summary = await IdentityResolver(session).sync_mappings(names)
        _emit(summary.to_dict())
        return 0

    async def _cmd_carry_forward(self, args: argparse.Namespace) -> int:
        async with get_session() as session:
            result = await PeriodService(session).carry_forward(
                args.base_period_id, args.target_period_id, actor_id=args.actor_id
            )
        _emit(
            {
                "basePeriodId": result.base_period_id,
                "targetPeriodId": result.target_period_id,
                "carriedInputCount": result.carried_input_count,
                "carriedExpenseCount": result.carried_expense_count,
            }
        )
        return 0

    async def _cmd_send_receipts(self, args: argparse.Namespace) -> int:
        _, factory = init_db()
        service = ReceiptDispatchService(factory, StubSignatureProvider())
        result = await service.send_receipts(
            args.period_id, resend_failed_only=args.resend_failed_only
        )
        _emit(
            {
                "periodId": result.period_id,
                "periodStatus": result.period_status.value,
                "attempted": result.attempted,
                "succeeded": result.succeeded,
                "failed": result.failed,
                "outcomes": [
                    {
                        "payrollName": o.payroll_name,
                        "status": o.status.value,
                        "requestId": o.request_id,
                        "error": o.error,
                    }
                    for o in result.outcomes
                ],
            }
        )
        return 1 if result.failed else 0

    async def _cmd_show_period(self, args: argparse.Namespace) -> int:
        async with get_session() as session:
            period = await PeriodRepository(session).require_period(args.period_id)
            payload = PeriodResponse.model_validate(period).model_dump(mode="json")
            payload["summary"] = period.summary_json
        _emit(payload)
        return 0


def main() -> int:
    """CLI entry point."""
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cli = PayrollCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
