# backend/app/services/ledger_service.py
"""
Transaction ledger.

Records course payments and refunds as immutable ledger rows and answers the
unsettled-balance question for the settlement engine. The ledger is the only
writer of transaction rows; the settlement engine only sets ``payout_id``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.enums import TransactionKind, TransactionStatus
from app.core.exceptions import (
    AlreadyRefundedException,
    DuplicateChargeReferenceException,
    DuplicateEnrollmentException,
    GatewayFailureException,
    InstructorNotPayableException,
    IntegrityConflict,
    InvalidAmountException,
    ServiceException,
    TransactionNotFoundException,
    TransactionNotRefundableException,
    ValidationException,
)
from app.database.unit_of_work import run_atomic
from app.events.payment_events import NotificationType, PaymentNotifier
from app.integrations.payment_gateway import PaymentGateway
from app.models.transaction import Transaction
from app.monitoring.prometheus_metrics import prometheus_metrics
from app.repositories.factory import RepositoryFactory
from app.schemas.ledger import Page, TransactionFilters, UnsettledBalance, page_window
from app.schemas.metadata import TransactionMetadata
from app.services.audit_service import AuditAction, AuditService
from app.services.base import BaseService
from app.services.commission_calculator import CommissionCalculator, CommissionConfig
from app.services.earnings_service import unsettled_balance_for
from app.utils.money import ZERO, round_money

logger = logging.getLogger(__name__)

_PAYMENT = TransactionKind.PAYMENT.value
_REFUND = TransactionKind.REFUND.value


@dataclass(frozen=True)
class RefundResult:
    original: Transaction
    refund: Transaction


class LedgerService(BaseService):
    """Records payments and refunds."""

    def __init__(
        self,
        db: Session,
        calculator: Optional[CommissionCalculator] = None,
        gateway: Optional[PaymentGateway] = None,
        notifier: Optional[PaymentNotifier] = None,
        audit: Optional[AuditService] = None,
    ):
        super().__init__(db)
        self.calculator = calculator or CommissionCalculator(
            CommissionConfig.from_settings(settings)
        )
        self.gateway = gateway
        self.notifier = notifier or PaymentNotifier()
        self.audit = audit or AuditService()
        self.transaction_repository = RepositoryFactory.create_transaction_repository(db)
        self.payout_account_repository = RepositoryFactory.create_payout_account_repository(db)

    # Payments

    def _normalize_currency(self, currency: Optional[str]) -> str:
        value = (currency or settings.stripe_currency).strip().upper()
        if len(value) != 3 or not value.isalpha():
            raise ValidationException(
                "Currency must be a 3-letter ISO code",
                code="INVALID_CURRENCY",
                details={"currency": currency},
            )
        return value

    def _ensure_enrollable(self, payer_id: str, course_id: str, instructor_id: str) -> None:
        if self.transaction_repository.find_completed_payment(payer_id, course_id):
            raise DuplicateEnrollmentException(payer_id, course_id)
        if not self.payout_account_repository.get_active_for_instructor(instructor_id):
            raise InstructorNotPayableException(instructor_id)

    @BaseService.measure_operation("record_payment")
    def record_payment(
        self,
        *,
        payer_id: str,
        course_id: str,
        instructor_id: str,
        gross_amount: Any,
        currency: Optional[str] = None,
        external_charge_ref: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Transaction:
        """
        Record a successful charge as a COMPLETED payment.

        Raises:
            DuplicateEnrollmentException: payer already paid for this course
            InstructorNotPayableException: instructor has no active payout destination
            InvalidAmountException: gross amount is not positive
            DuplicateChargeReferenceException: charge reference already recorded
        """
        currency_code = self._normalize_currency(currency)
        self._ensure_enrollable(payer_id, course_id, instructor_id)
        split = self.calculator.calculate_split(gross_amount, instructor_id)
        txn_metadata = TransactionMetadata.load(metadata)

        try:
            with self.transaction():
                txn = self.transaction_repository.create(
                    external_charge_ref=external_charge_ref,
                    amount=split.gross_amount,
                    currency=currency_code,
                    status=TransactionStatus.COMPLETED.value,
                    kind=_PAYMENT,
                    platform_commission=split.platform_commission,
                    instructor_earnings=split.instructor_earnings,
                    payer_id=payer_id,
                    course_id=course_id,
                    instructor_id=instructor_id,
                    description=description,
                    metadata_json=txn_metadata.dump(),
                )
        except IntegrityConflict as exc:
            if exc.mentions("external_charge_ref"):
                # The charge is already in the ledger; nothing to record.
                raise DuplicateChargeReferenceException(external_charge_ref or "") from exc
            self._record_failed_payment(
                payer_id=payer_id,
                course_id=course_id,
                instructor_id=instructor_id,
                amount=split.gross_amount,
                currency=currency_code,
                charge_ref=external_charge_ref,
                description=description,
                metadata=txn_metadata,
                error=str(exc),
            )
            if exc.mentions("uq_transactions_completed_enrollment", "payer_id"):
                raise DuplicateEnrollmentException(payer_id, course_id) from exc
            raise
        except Exception as exc:
            self._record_failed_payment(
                payer_id=payer_id,
                course_id=course_id,
                instructor_id=instructor_id,
                amount=split.gross_amount,
                currency=currency_code,
                charge_ref=external_charge_ref,
                description=description,
                metadata=txn_metadata,
                error=str(exc),
            )
            raise

        prometheus_metrics.inc_transaction(_PAYMENT, txn.status)
        self.logger.info(
            "Recorded payment",
            extra={
                "transaction_id": txn.id,
                "instructor_id": instructor_id,
                "amount": str(txn.amount),
            },
        )
        self.run_side_effect(
            "audit.payment_recorded",
            self.audit.log,
            AuditAction.PAYMENT_RECORDED,
            actor_id=payer_id,
            resource_id=txn.id,
            description=f"Payment of {txn.amount} {txn.currency} for course {course_id}",
            metadata={
                "platform_commission": txn.platform_commission,
                "instructor_earnings": txn.instructor_earnings,
                "external_charge_ref": external_charge_ref,
            },
        )
        self.run_side_effect(
            "notify.payment_completed",
            self.notifier.notify,
            NotificationType.PAYMENT_COMPLETED,
            payer_id,
            transaction_id=txn.id,
            course_id=course_id,
            amount=txn.amount,
        )
        self.run_side_effect(
            "notify.new_earnings",
            self.notifier.notify,
            NotificationType.NEW_EARNINGS,
            instructor_id,
            transaction_id=txn.id,
            course_id=course_id,
            earnings=txn.instructor_earnings,
        )
        return txn

    def _record_failed_payment(
        self,
        *,
        payer_id: str,
        course_id: str,
        instructor_id: str,
        amount: Decimal,
        currency: str,
        charge_ref: Optional[str],
        description: Optional[str],
        metadata: TransactionMetadata,
        error: str,
    ) -> Optional[Transaction]:
        """
        Keep a FAILED row for a charge that could not be booked.

        The charge reference goes into metadata so the row cannot clash with a
        successful recording of the same charge.
        """
        failed_metadata = metadata.merged(error=error, failed_charge_ref=charge_ref)
        try:
            with self.transaction():
                failed = self.transaction_repository.create(
                    external_charge_ref=None,
                    amount=amount,
                    currency=currency,
                    status=TransactionStatus.FAILED.value,
                    kind=_PAYMENT,
                    platform_commission=ZERO,
                    instructor_earnings=ZERO,
                    payer_id=payer_id,
                    course_id=course_id,
                    instructor_id=instructor_id,
                    description=description,
                    metadata_json=failed_metadata.dump(),
                )
        except Exception:
            self.logger.exception(
                "Could not persist failed payment row", extra={"charge_ref": charge_ref}
            )
            return None

        prometheus_metrics.inc_transaction(_PAYMENT, failed.status)
        self.run_side_effect(
            "audit.payment_failed",
            self.audit.log,
            AuditAction.PAYMENT_FAILED,
            actor_id=payer_id,
            resource_id=failed.id,
            description=f"Payment for course {course_id} failed: {error}",
            status="failed",
            metadata={"charge_ref": charge_ref},
        )
        return failed

    @BaseService.measure_operation("charge_and_record_payment")
    def charge_and_record_payment(
        self,
        *,
        payer_id: str,
        course_id: str,
        instructor_id: str,
        gross_amount: Any,
        payment_method_token: str,
        currency: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Transaction:
        """
        Charge the payer through the gateway, then record the payment.

        A declined or failed charge leaves a FAILED row and raises
        ``GatewayFailureException``.
        """
        if self.gateway is None:
            raise ServiceException(
                "Payment gateway is not configured", code="GATEWAY_NOT_CONFIGURED"
            )

        currency_code = self._normalize_currency(currency)
        split = self.calculator.calculate_split(gross_amount, instructor_id)
        self._ensure_enrollable(payer_id, course_id, instructor_id)
        txn_metadata = TransactionMetadata.load(metadata)

        try:
            charge = self.gateway.charge(
                split.gross_amount,
                currency_code,
                payment_method_token,
                metadata={"payer_id": payer_id, "course_id": course_id},
            )
        except GatewayFailureException as exc:
            self._record_failed_payment(
                payer_id=payer_id,
                course_id=course_id,
                instructor_id=instructor_id,
                amount=split.gross_amount,
                currency=currency_code,
                charge_ref=exc.details.get("charge_ref"),
                description=description,
                metadata=txn_metadata,
                error=exc.message,
            )
            raise

        return self.record_payment(
            payer_id=payer_id,
            course_id=course_id,
            instructor_id=instructor_id,
            gross_amount=split.gross_amount,
            currency=currency_code,
            external_charge_ref=charge.charge_ref,
            description=description,
            metadata=txn_metadata.merged(
                payment_method="card",
                card_last4=charge.card_last4,
                gateway_status=charge.status,
            ).dump(),
        )

    # Refunds

    @staticmethod
    def _assert_refundable(original: Optional[Transaction], transaction_id: str) -> Transaction:
        if original is None:
            raise TransactionNotFoundException(transaction_id)
        if original.status == TransactionStatus.REFUNDED.value:
            raise AlreadyRefundedException(original.id)
        if not original.is_payment or original.status != TransactionStatus.COMPLETED.value:
            raise TransactionNotRefundableException(original.id, original.kind, original.status)
        return original

    @BaseService.measure_operation("record_refund")
    def record_refund(
        self,
        transaction_id: str,
        requested_amount: Any = None,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> RefundResult:
        """
        Refund a completed payment in full or in part.

        The REFUND row and the REFUNDED mark on the original are written in one
        atomic unit.
        """
        original = self._assert_refundable(
            self.transaction_repository.get_by_id(transaction_id), transaction_id
        )

        if requested_amount is None:
            refund_amount = original.amount
        else:
            try:
                refund_amount = round_money(requested_amount)
            except ValueError:
                raise InvalidAmountException(requested_amount, reason="Amount is not a number")
        if refund_amount <= ZERO:
            raise InvalidAmountException(requested_amount)
        if refund_amount > original.amount:
            raise InvalidAmountException(
                requested_amount, reason="Refund amount exceeds the original payment"
            )

        gateway_ref = None
        if self.gateway is not None and original.external_charge_ref:
            receipt = self.gateway.refund(
                original.external_charge_ref,
                refund_amount,
                reason,
                idempotency_key=f"refund:{original.id}",
            )
            gateway_ref = receipt.refund_ref

        result = run_atomic(
            self.db,
            lambda: self._apply_refund(
                transaction_id, refund_amount, reason, actor_id, gateway_ref
            ),
            name="record_refund",
        )
        if not result.ok and gateway_ref is not None:
            self.logger.error(
                "Gateway refund issued but ledger write failed",
                extra={"transaction_id": transaction_id, "refund_ref": gateway_ref},
            )
        outcome = result.unwrap()

        prometheus_metrics.inc_transaction(_REFUND, outcome.refund.status)
        self.run_side_effect(
            "audit.refund_processed",
            self.audit.log,
            AuditAction.REFUND_PROCESSED,
            actor_id=actor_id,
            resource_id=outcome.refund.id,
            description=f"Refund of {refund_amount} against transaction {transaction_id}",
            metadata={"original_transaction_id": transaction_id, "reason": reason},
        )
        self.run_side_effect(
            "notify.refund_completed",
            self.notifier.notify,
            NotificationType.REFUND_COMPLETED,
            outcome.original.payer_id,
            transaction_id=outcome.original.id,
            refund_id=outcome.refund.id,
            amount=refund_amount,
        )
        return outcome

    def _apply_refund(
        self,
        transaction_id: str,
        refund_amount: Decimal,
        reason: Optional[str],
        actor_id: Optional[str],
        gateway_ref: Optional[str],
    ) -> RefundResult:
        original = self._assert_refundable(
            self.transaction_repository.get_for_update(transaction_id), transaction_id
        )

        if refund_amount == original.amount:
            ratio = Decimal("1")
            commission = -original.platform_commission
            earnings = -original.instructor_earnings
        else:
            ratio = refund_amount / original.amount
            commission = -round_money(original.platform_commission * ratio)
            earnings = -round_money(original.instructor_earnings * ratio)

        refund_metadata = TransactionMetadata(
            original_transaction_id=original.id,
            refund_reason=reason,
            refunded_by=actor_id,
            refund_ratio=str(ratio.quantize(Decimal("0.0001"))),
        )
        try:
            refund = self.transaction_repository.create(
                external_charge_ref=gateway_ref,
                amount=refund_amount,
                currency=original.currency,
                status=TransactionStatus.COMPLETED.value,
                kind=_REFUND,
                platform_commission=commission,
                instructor_earnings=earnings,
                payer_id=original.payer_id,
                course_id=original.course_id,
                instructor_id=original.instructor_id,
                description=f"Refund for transaction {original.id}",
                metadata_json=refund_metadata.dump(),
                refund_of_id=original.id,
            )
        except IntegrityConflict as exc:
            if exc.mentions("external_charge_ref"):
                raise DuplicateChargeReferenceException(gateway_ref or "") from exc
            raise

        original.status = TransactionStatus.REFUNDED.value
        original.refund_id = refund.id
        original.metadata_json = (
            TransactionMetadata.load(original.metadata_json)
            .merged(refund_reason=reason, refunded_by=actor_id)
            .dump()
        )
        self.transaction_repository.flush()
        return RefundResult(original=original, refund=refund)

    # Disputes

    @BaseService.measure_operation("mark_disputed")
    def mark_disputed(
        self,
        *,
        transaction_id: Optional[str] = None,
        external_charge_ref: Optional[str] = None,
        dispute_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Optional[Transaction]:
        """
        Flag a completed payment as charged back. Disputed earnings are never settled.

        Returns None when the charge is unknown to the ledger.
        """
        if transaction_id:
            txn = self.transaction_repository.get_by_id(transaction_id)
        elif external_charge_ref:
            txn = self.transaction_repository.get_by_external_ref(external_charge_ref)
        else:
            raise ValidationException(
                "A transaction id or charge reference is required", code="MISSING_REFERENCE"
            )

        if txn is None:
            self.logger.warning(
                "Dispute for unknown transaction",
                extra={"transaction_id": transaction_id, "charge_ref": external_charge_ref},
            )
            return None
        if txn.status == TransactionStatus.DISPUTED.value:
            return txn
        if not txn.is_payment or txn.status != TransactionStatus.COMPLETED.value:
            self.logger.warning(
                f"Ignoring dispute on {txn.kind} transaction {txn.id} with status {txn.status}"
            )
            return txn
        if txn.is_settled:
            self.logger.warning(
                f"Disputed transaction {txn.id} was already settled in payout {txn.payout_id}"
            )

        with self.transaction():
            txn.status = TransactionStatus.DISPUTED.value
            txn.metadata_json = (
                TransactionMetadata.load(txn.metadata_json)
                .merged(dispute_id=dispute_id, dispute_reason=reason)
                .dump()
            )
            self.transaction_repository.flush()

        prometheus_metrics.inc_transaction(_PAYMENT, txn.status)
        self.run_side_effect(
            "audit.payment_disputed",
            self.audit.log,
            AuditAction.PAYMENT_DISPUTED,
            resource_id=txn.id,
            description=f"Payment {txn.id} disputed",
            metadata={"dispute_id": dispute_id, "reason": reason},
        )
        return txn

    # Reads

    @BaseService.measure_operation("get_unsettled_balance")
    def get_unsettled_balance(self, instructor_id: str) -> UnsettledBalance:
        return unsettled_balance_for(self.transaction_repository, instructor_id)

    @BaseService.measure_operation("get_transaction")
    def get_transaction(self, transaction_id: str) -> Transaction:
        txn = self.transaction_repository.get_by_id(transaction_id)
        if txn is None:
            raise TransactionNotFoundException(transaction_id)
        return txn

    @BaseService.measure_operation("list_transactions_for_payer")
    def list_transactions_for_payer(
        self, payer_id: str, page: int = 1, limit: int = 20
    ) -> Page[Transaction]:
        page, limit, offset = page_window(page, limit)
        items, total = self.transaction_repository.list_for_payer(payer_id, offset, limit)
        return Page[Transaction](items=items, total=total, page=page, limit=limit)

    @BaseService.measure_operation("list_transactions")
    def list_transactions(
        self, filters: Optional[TransactionFilters] = None, page: int = 1, limit: int = 20
    ) -> Page[Transaction]:
        page, limit, offset = page_window(page, limit)
        items, total = self.transaction_repository.list_filtered(
            filters or TransactionFilters(), offset, limit
        )
        return Page[Transaction](items=items, total=total, page=page, limit=limit)


__all__ = ["LedgerService", "RefundResult"]
