# backend/app/services/payout_service.py
"""
Payout settlement engine.

Turns an instructor's unsettled earnings into payout batches:

    request  -> PENDING
    process  -> PROCESSING -> COMPLETED | FAILED
    cancel   -> CANCELLED (from PENDING only)

Processing runs as two atomic units. The first claims the payout
(PENDING -> PROCESSING) and commits, so concurrent processors cannot both
claim it. The second locks the instructor's unsettled rows, moves the money
through the transfer provider and, only on a confirmed transfer, tags the
consumed rows and marks the payout COMPLETED. A definitive transfer failure
rolls that unit back and records FAILED; a timeout leaves the payout in
PROCESSING because the outcome of the transfer is unknown.
"""

from __future__ import annotations

from decimal import Decimal
import logging
import time
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.enums import PayoutMethod, PayoutStatus
from app.core.exceptions import (
    DomainException,
    ExistingPendingPayoutException,
    GatewayFailureException,
    GatewayTimeoutException,
    InsufficientBalanceAtSettlementException,
    InsufficientBalanceException,
    IntegrityConflict,
    InvalidAmountException,
    InvalidPayoutStateException,
    PayoutNotFoundException,
    PayoutProcessingFailedException,
    RepositoryException,
    ServiceException,
    UnauthorizedPayoutActionException,
    ValidationException,
)
from app.database.unit_of_work import run_atomic
from app.events.payment_events import NotificationType, PaymentNotifier
from app.integrations.payment_gateway import PaymentGateway
from app.integrations.payout_transfers import TransferRouter
from app.models.payout import Payout
from app.models.transaction import Transaction
from app.models.types import now_utc
from app.monitoring.prometheus_metrics import prometheus_metrics
from app.repositories.factory import RepositoryFactory
from app.schemas.ledger import Page, PayoutFilters, page_window
from app.schemas.metadata import PayoutMetadata
from app.services.audit_service import AuditAction, AuditService
from app.services.base import BaseService
from app.services.earnings_service import unsettled_balance_for
from app.services.payout_fees import PayoutFeeSchedule
from app.utils.money import ZERO, round_money

logger = logging.getLogger(__name__)

PAYOUT_NUMBER_PREFIX = "PAYOUT"


def format_payout_number(year: int, sequence: int) -> str:
    return f"{PAYOUT_NUMBER_PREFIX}-{year}-{sequence:06d}"


def allocate_oldest_first(candidates: List[Transaction], amount: Decimal) -> List[Transaction]:
    """
    Greedy allocation: take rows oldest-first until their earnings cover ``amount``.

    Refund rows count negatively. The last row is taken whole, so the
    allocated earnings may exceed ``amount``.
    """
    allocated: List[Transaction] = []
    running = ZERO
    for txn in candidates:
        if running >= amount:
            break
        allocated.append(txn)
        running += txn.instructor_earnings
    return allocated


class PayoutService(BaseService):
    """Requests, processes and cancels instructor payouts."""

    def __init__(
        self,
        db: Session,
        transfer_router: Optional[TransferRouter] = None,
        fee_schedule: Optional[PayoutFeeSchedule] = None,
        notifier: Optional[PaymentNotifier] = None,
        audit: Optional[AuditService] = None,
        gateway: Optional[PaymentGateway] = None,
    ):
        super().__init__(db)
        self.transfer_router = transfer_router or TransferRouter.with_gateway(gateway)
        self.fee_schedule = fee_schedule or PayoutFeeSchedule()
        self.notifier = notifier or PaymentNotifier()
        self.audit = audit or AuditService()
        self.payout_repository = RepositoryFactory.create_payout_repository(db)
        self.transaction_repository = RepositoryFactory.create_transaction_repository(db)
        self.payout_account_repository = RepositoryFactory.create_payout_account_repository(db)

    # Requests

    @staticmethod
    def _parse_method(payment_method: Any) -> PayoutMethod:
        try:
            return PayoutMethod(payment_method)
        except ValueError:
            raise ValidationException(
                f"Unsupported payout method: {payment_method}",
                code="INVALID_PAYMENT_METHOD",
                details={
                    "payment_method": str(payment_method),
                    "allowed": [m.value for m in PayoutMethod],
                },
            )

    @BaseService.measure_operation("request_payout")
    def request_payout(
        self,
        *,
        instructor_id: str,
        amount: Any,
        payment_method: Any = PayoutMethod.BANK_TRANSFER,
        bank_details: Optional[Dict[str, Any]] = None,
        notes: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        requested_by: Optional[str] = None,
    ) -> Payout:
        """
        Open a PENDING payout against the instructor's unsettled balance.

        Raises:
            InvalidAmountException: amount is not positive
            ExistingPendingPayoutException: a PENDING payout is already open
            InsufficientBalanceException: amount exceeds the unsettled balance
        """
        method = self._parse_method(payment_method)
        try:
            value = round_money(amount)
        except ValueError:
            raise InvalidAmountException(amount, reason="Amount is not a number")
        if value <= ZERO:
            raise InvalidAmountException(amount)

        existing = self.payout_repository.get_pending_for_instructor(instructor_id)
        if existing is not None:
            raise ExistingPendingPayoutException(instructor_id, existing.id)

        balance = unsettled_balance_for(self.transaction_repository, instructor_id)
        if value > balance.pending_amount:
            raise InsufficientBalanceException(value, balance.pending_amount)

        now = now_utc()
        payout_metadata = PayoutMetadata.load(metadata).merged(
            requested_by=requested_by or instructor_id
        )
        payout = self._create_numbered_payout(
            year=now.year,
            instructor_id=instructor_id,
            amount=value,
            processing_fee=self.fee_schedule.fee_for(method, value),
            currency=settings.stripe_currency.upper(),
            payment_method=method.value,
            bank_details=bank_details,
            status=PayoutStatus.PENDING.value,
            period_start=balance.oldest_unsettled_at or now,
            period_end=now,
            requested_at=now,
            notes=notes,
            metadata_json=payout_metadata.dump(),
        )

        prometheus_metrics.inc_payout(payout.status)
        self.logger.info(
            f"Payout {payout.payout_number} requested",
            extra={"payout_id": payout.id, "instructor_id": instructor_id, "amount": str(value)},
        )
        self.run_side_effect(
            "audit.payout_requested",
            self.audit.log,
            AuditAction.PAYOUT_REQUESTED,
            actor_id=requested_by or instructor_id,
            resource_type="payout",
            resource_id=payout.id,
            description=f"Payout {payout.payout_number} requested for {value}",
            metadata={
                "payment_method": method,
                "processing_fee": payout.processing_fee,
                "bank_details": bank_details,
            },
        )
        return payout

    def _create_numbered_payout(self, *, year: int, instructor_id: str, **fields: Any) -> Payout:
        """Insert with the next payout number of the year, retrying on a number collision."""
        prefix = f"{PAYOUT_NUMBER_PREFIX}-{year}-"
        attempts = settings.payout_number_max_attempts
        for attempt in range(attempts):
            sequence = self.payout_repository.count_with_number_prefix(prefix) + 1 + attempt
            number = format_payout_number(year, sequence)
            try:
                with self.transaction():
                    return self.payout_repository.create(
                        payout_number=number, instructor_id=instructor_id, **fields
                    )
            except IntegrityConflict as exc:
                if exc.mentions("payout_number"):
                    self.logger.info(f"Payout number {number} already taken, retrying")
                    continue
                if exc.mentions("uq_payouts_one_pending_per_instructor", "instructor_id"):
                    raise ExistingPendingPayoutException(instructor_id) from exc
                raise
        raise ServiceException(
            "Could not allocate a payout number",
            code="PAYOUT_NUMBER_EXHAUSTED",
            details={"prefix": prefix, "attempts": attempts},
        )

    # Processing

    @BaseService.measure_operation("process_payout")
    def process_payout(self, payout_id: str, actor_id: Optional[str] = None) -> Payout:
        """
        Settle a PENDING payout.

        Raises:
            PayoutNotFoundException
            InvalidPayoutStateException: payout is not PENDING
            InsufficientBalanceAtSettlementException: balance shrank since the request
            PayoutProcessingFailedException: the transfer was rejected (payout is FAILED)
            GatewayTimeoutException: transfer outcome unknown (payout stays PROCESSING)
        """
        started = time.monotonic()

        claimed = run_atomic(
            self.db, lambda: self._claim(payout_id, actor_id), name="claim_payout"
        ).unwrap()
        prometheus_metrics.inc_payout(claimed.status)
        self.run_side_effect(
            "audit.payout_processing",
            self.audit.log,
            AuditAction.PAYOUT_PROCESSING,
            actor_id=actor_id,
            resource_type="payout",
            resource_id=claimed.id,
            description=f"Payout {claimed.payout_number} processing started",
        )

        result = run_atomic(
            self.db,
            lambda: self._settle(payout_id, actor_id, started),
            name="settle_payout",
        )
        if result.ok:
            payout = result.unwrap()
            prometheus_metrics.inc_payout(payout.status)
            self.logger.info(
                f"Payout {payout.payout_number} completed",
                extra={"payout_id": payout.id, "transfer_ref": payout.transfer_ref},
            )
            self.run_side_effect(
                "audit.payout_completed",
                self.audit.log,
                AuditAction.PAYOUT_COMPLETED,
                actor_id=actor_id,
                resource_type="payout",
                resource_id=payout.id,
                description=f"Payout {payout.payout_number} completed",
                metadata=PayoutMetadata.load(payout.metadata_json).dump(),
            )
            self.run_side_effect(
                "notify.payout_completed",
                self.notifier.notify,
                NotificationType.PAYOUT_COMPLETED,
                payout.instructor_id,
                payout_id=payout.id,
                payout_number=payout.payout_number,
                amount=payout.amount,
            )
            return payout

        error = result.error
        assert error is not None
        if isinstance(error, GatewayTimeoutException):
            self.logger.warning(
                f"Transfer for payout {claimed.payout_number} timed out; left in PROCESSING",
                extra={"payout_id": claimed.id},
            )
            raise error
        if result.is_infrastructure_failure or isinstance(
            error, (PayoutNotFoundException, InvalidPayoutStateException)
        ):
            self.logger.error(
                f"Settlement of payout {claimed.payout_number} aborted; left in PROCESSING",
                extra={"payout_id": claimed.id},
            )
            raise error

        reason = error.message if isinstance(error, DomainException) else str(error)
        failed = self._mark_failed(payout_id, reason, started)
        self.run_side_effect(
            "audit.payout_failed",
            self.audit.log,
            AuditAction.PAYOUT_FAILED,
            actor_id=actor_id,
            resource_type="payout",
            resource_id=failed.id,
            description=f"Payout {failed.payout_number} failed: {reason}",
            status="failed",
        )
        self.run_side_effect(
            "notify.payout_failed",
            self.notifier.notify,
            NotificationType.PAYOUT_FAILED,
            failed.instructor_id,
            payout_id=failed.id,
            payout_number=failed.payout_number,
            reason=reason,
        )
        if isinstance(error, GatewayFailureException):
            raise PayoutProcessingFailedException(
                failed.id, failed.payout_number, reason
            ) from error
        raise error

    def _claim(self, payout_id: str, actor_id: Optional[str]) -> Payout:
        payout = self.payout_repository.get_for_update(payout_id)
        if payout is None:
            raise PayoutNotFoundException(payout_id)
        if not payout.status_enum.can_transition_to(PayoutStatus.PROCESSING):
            raise InvalidPayoutStateException(payout.id, payout.status, "process")

        payout.status = PayoutStatus.PROCESSING.value
        payout.metadata_json = (
            PayoutMetadata.load(payout.metadata_json).merged(processed_by=actor_id).dump()
        )
        self.payout_repository.flush()
        return payout

    def _settle(self, payout_id: str, actor_id: Optional[str], started: float) -> Payout:
        payout = self.payout_repository.get_for_update(payout_id)
        if payout is None:
            raise PayoutNotFoundException(payout_id)
        if payout.status != PayoutStatus.PROCESSING.value:
            raise InvalidPayoutStateException(payout.id, payout.status, "settle")

        candidates = self.transaction_repository.get_settlement_candidates(
            payout.instructor_id, lock=True
        )
        available = round_money(sum((t.instructor_earnings for t in candidates), ZERO))
        if available < payout.amount:
            raise InsufficientBalanceAtSettlementException(payout.id, payout.amount, available)

        allocated = allocate_oldest_first(candidates, payout.amount)
        account = self.payout_account_repository.get_by_instructor(payout.instructor_id)
        transfer = self.transfer_router.send(payout, account)

        allocated_ids = [t.id for t in allocated]
        tagged = self.transaction_repository.tag_with_payout(allocated_ids, payout.id)
        if tagged != len(allocated_ids):
            raise RepositoryException(
                f"Expected to tag {len(allocated_ids)} transactions for payout "
                f"{payout.payout_number}, tagged {tagged}"
            )

        payout.status = PayoutStatus.COMPLETED.value
        payout.processed_at = now_utc()
        payout.transfer_ref = transfer.transfer_ref
        payout.metadata_json = (
            PayoutMetadata.load(payout.metadata_json)
            .merged(
                processed_by=actor_id,
                transfer_ref=transfer.transfer_ref,
                transfer_status=transfer.status,
                processing_time_ms=int((time.monotonic() - started) * 1000),
                allocated_transaction_ids=allocated_ids,
                allocated_earnings=str(
                    round_money(sum((t.instructor_earnings for t in allocated), ZERO))
                ),
            )
            .dump()
        )
        self.payout_repository.flush()
        return payout

    def _mark_failed(self, payout_id: str, reason: str, started: float) -> Payout:
        def fail() -> Payout:
            payout = self.payout_repository.get_for_update(payout_id)
            if payout is None:
                raise PayoutNotFoundException(payout_id)
            now = now_utc()
            payout.status = PayoutStatus.FAILED.value
            payout.processed_at = now
            payout.append_note(f"Processing failed on {now.isoformat()}: {reason}")
            payout.metadata_json = (
                PayoutMetadata.load(payout.metadata_json)
                .merged(
                    error=reason,
                    processing_time_ms=int((time.monotonic() - started) * 1000),
                )
                .dump()
            )
            self.payout_repository.flush()
            return payout

        failed = run_atomic(self.db, fail, name="fail_payout").unwrap()
        prometheus_metrics.inc_payout(failed.status)
        self.logger.warning(
            f"Payout {failed.payout_number} failed: {reason}", extra={"payout_id": failed.id}
        )
        return failed

    # Cancellation

    @BaseService.measure_operation("cancel_payout")
    def cancel_payout(self, payout_id: str, actor_id: str, is_admin: bool = False) -> Payout:
        """
        Cancel a PENDING payout. Instructors may only cancel their own.

        Raises:
            PayoutNotFoundException
            InvalidPayoutStateException: payout is not PENDING
            UnauthorizedPayoutActionException: actor is neither admin nor owner
        """

        def cancel() -> Payout:
            payout = self.payout_repository.get_for_update(payout_id)
            if payout is None:
                raise PayoutNotFoundException(payout_id)
            if not payout.status_enum.can_transition_to(PayoutStatus.CANCELLED):
                raise InvalidPayoutStateException(payout.id, payout.status, "cancel")
            if not is_admin and actor_id != payout.instructor_id:
                raise UnauthorizedPayoutActionException(payout.id, actor_id)

            now = now_utc()
            role = "admin" if is_admin else "instructor"
            payout.status = PayoutStatus.CANCELLED.value
            payout.append_note(f"Cancelled by {role} {actor_id} on {now.isoformat()}")
            payout.metadata_json = (
                PayoutMetadata.load(payout.metadata_json)
                .merged(cancelled_by=actor_id, cancelled_at=now)
                .dump()
            )
            self.payout_repository.flush()
            return payout

        payout = run_atomic(self.db, cancel, name="cancel_payout").unwrap()
        prometheus_metrics.inc_payout(payout.status)
        self.run_side_effect(
            "audit.payout_cancelled",
            self.audit.log,
            AuditAction.PAYOUT_CANCELLED,
            actor_id=actor_id,
            resource_type="payout",
            resource_id=payout.id,
            description=f"Payout {payout.payout_number} cancelled",
            metadata={"is_admin": is_admin},
        )
        return payout

    # Reads

    @BaseService.measure_operation("get_payout_by_id")
    def get_payout_by_id(self, payout_id: str) -> Payout:
        payout = self.payout_repository.get_with_transactions(payout_id)
        if payout is None:
            raise PayoutNotFoundException(payout_id)
        return payout

    @BaseService.measure_operation("list_payouts_for_instructor")
    def list_payouts_for_instructor(
        self, instructor_id: str, page: int = 1, limit: int = 20
    ) -> Page[Payout]:
        page, limit, offset = page_window(page, limit)
        items, total = self.payout_repository.list_for_instructor(instructor_id, offset, limit)
        return Page[Payout](items=items, total=total, page=page, limit=limit)

    @BaseService.measure_operation("list_all_payouts")
    def list_all_payouts(
        self, filters: Optional[PayoutFilters] = None, page: int = 1, limit: int = 20
    ) -> Page[Payout]:
        page, limit, offset = page_window(page, limit)
        items, total = self.payout_repository.list_filtered(
            filters or PayoutFilters(), offset, limit
        )
        return Page[Payout](items=items, total=total, page=page, limit=limit)


__all__ = ["PayoutService", "allocate_oldest_first", "format_payout_number"]
