#!/usr/bin/env python
# backend/app/commands/payouts.py
"""
Payout management commands for the payments ledger.

Operator tooling for inspecting balances and settling payouts outside the
request path.

Usage:
    python -m app.commands.payouts balance <instructor_id>   # Unsettled balance
    python -m app.commands.payouts process <payout_id>       # Settle a PENDING payout
    python -m app.commands.payouts list [--status PENDING]   # List payouts
"""

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from app.core.config import settings
from app.core.enums import PayoutStatus
from app.core.exceptions import DomainException
from app.core.logging_config import configure_logging
from app.database import SessionLocal, get_engine
from app.integrations.payment_gateway import StripePaymentGateway
from app.schemas.ledger import PayoutFilters
from app.services.earnings_service import EarningsService
from app.services.payout_service import PayoutService

logger = logging.getLogger(__name__)


def _payout_row(payout: Any) -> Dict[str, Any]:
    return {
        "id": payout.id,
        "payout_number": payout.payout_number,
        "instructor_id": payout.instructor_id,
        "amount": str(payout.amount),
        "processing_fee": str(payout.processing_fee),
        "status": payout.status,
        "transfer_ref": payout.transfer_ref,
    }


class PayoutCommand:
    """Payout management command handler."""

    def __init__(self, session_factory=SessionLocal) -> None:
        self.session_factory = session_factory

    def _build_gateway(self) -> Optional[StripePaymentGateway]:
        if settings.stripe_secret_key is None:
            logger.warning("STRIPE_SECRET_KEY not set; only manual payout methods will settle")
            return None
        return StripePaymentGateway()

    def balance(self, instructor_id: str) -> Dict[str, Any]:
        with self.session_factory() as db:
            balance = EarningsService(db).get_unsettled_balance(instructor_id)
        return balance.model_dump(mode="json")

    def process(self, payout_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
        with self.session_factory() as db:
            service = PayoutService(db, gateway=self._build_gateway())
            try:
                payout = service.process_payout(payout_id, actor_id=actor_id)
            except DomainException as exc:
                logger.error(f"Payout {payout_id} was not settled: {exc.message}")
                return {"status": "failed", "code": exc.code, "error": exc.message}
            return {"status": "success", "payout": _payout_row(payout)}

    def list_payouts(
        self,
        status: Optional[str] = None,
        instructor_id: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        filters = PayoutFilters(
            status=PayoutStatus(status) if status else None, instructor_id=instructor_id
        )
        with self.session_factory() as db:
            result = PayoutService(db).list_all_payouts(filters, page=page, limit=limit)
            rows: List[Dict[str, Any]] = [_payout_row(p) for p in result.items]
        return {"total": result.total, "page": result.page, "pages": result.pages, "items": rows}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Payout management commands")
    subparsers = parser.add_subparsers(dest="command", required=True)

    balance_parser = subparsers.add_parser(
        "balance", help="Show an instructor's unsettled balance"
    )
    balance_parser.add_argument("instructor_id")

    process_parser = subparsers.add_parser("process", help="Settle a PENDING payout")
    process_parser.add_argument("payout_id")
    process_parser.add_argument("--actor", dest="actor_id", default="ops-cli")

    list_parser = subparsers.add_parser("list", help="List payouts")
    list_parser.add_argument("--status", choices=[s.value for s in PayoutStatus])
    list_parser.add_argument("--instructor", dest="instructor_id")
    list_parser.add_argument("--page", type=int, default=1)
    list_parser.add_argument("--limit", type=int, default=20)

    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)
    get_engine()

    command = PayoutCommand()
    if args.command == "balance":
        result = command.balance(args.instructor_id)
    elif args.command == "process":
        result = command.process(args.payout_id, actor_id=args.actor_id)
    else:
        result = command.list_payouts(
            status=args.status,
            instructor_id=args.instructor_id,
            page=args.page,
            limit=args.limit,
        )

    print(json.dumps(result, indent=2, default=str))
    return 1 if result.get("status") == "failed" else 0


if __name__ == "__main__":
    sys.exit(main())
