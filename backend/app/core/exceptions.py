# backend/app/core/exceptions.py
"""
Domain-specific exceptions for the payments ledger.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ForbiddenException(DomainException):
    """Raised when user lacks permission for an action."""

    status_code = status.HTTP_403_FORBIDDEN


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Ledger exceptions


class InvalidAmountException(ValidationException):
    """Raised when a monetary amount is zero, negative or out of range."""

    def __init__(self, amount: Any, reason: str = "Amount must be greater than zero"):
        super().__init__(
            message=reason,
            code="INVALID_AMOUNT",
            details={"amount": str(amount)},
        )


class DuplicateEnrollmentException(ConflictException):
    """Raised when a payer already has a completed payment for a course."""

    def __init__(self, payer_id: str, course_id: str):
        super().__init__(
            message="A completed payment already exists for this course",
            code="DUPLICATE_ENROLLMENT",
            details={"payer_id": payer_id, "course_id": course_id},
        )


class DuplicateChargeReferenceException(ConflictException):
    """Raised when a gateway charge reference was already recorded."""

    def __init__(self, external_charge_ref: str):
        super().__init__(
            message="This gateway charge has already been recorded",
            code="DUPLICATE_CHARGE_REFERENCE",
            details={"external_charge_ref": external_charge_ref},
        )


class InstructorNotPayableException(BusinessRuleException):
    """Raised when an instructor has no active payout destination."""

    def __init__(self, instructor_id: str):
        super().__init__(
            message="Instructor has no active payout destination",
            code="INSTRUCTOR_NOT_PAYABLE",
            details={"instructor_id": instructor_id},
        )


class TransactionNotFoundException(NotFoundException):
    def __init__(self, transaction_id: str):
        super().__init__(
            message="Transaction not found",
            code="TRANSACTION_NOT_FOUND",
            details={"transaction_id": transaction_id},
        )


class AlreadyRefundedException(ConflictException):
    def __init__(self, transaction_id: str):
        super().__init__(
            message="Transaction already refunded",
            code="ALREADY_REFUNDED",
            details={"transaction_id": transaction_id},
        )


class TransactionNotRefundableException(BusinessRuleException):
    """Raised when a refund targets anything other than a completed payment."""

    def __init__(self, transaction_id: str, kind: str, status_value: str):
        super().__init__(
            message=f"Cannot refund a {kind} transaction with status {status_value}",
            code="TRANSACTION_NOT_REFUNDABLE",
            details={"transaction_id": transaction_id, "kind": kind, "status": status_value},
        )


# Settlement exceptions


class PayoutNotFoundException(NotFoundException):
    def __init__(self, payout_id: str):
        super().__init__(
            message="Payout not found",
            code="PAYOUT_NOT_FOUND",
            details={"payout_id": payout_id},
        )


class InvalidPayoutStateException(BusinessRuleException):
    """Raised when a payout transition is not allowed from its current state."""

    def __init__(self, payout_id: str, current: str, action: str):
        super().__init__(
            message=f"Cannot {action} a payout with status: {current}",
            code="INVALID_PAYOUT_STATE",
            details={"payout_id": payout_id, "status": current, "action": action},
        )


class ExistingPendingPayoutException(ConflictException):
    def __init__(self, instructor_id: str, payout_id: Optional[str] = None):
        super().__init__(
            message="You already have a pending payout request",
            code="EXISTING_PENDING_PAYOUT",
            details={"instructor_id": instructor_id, "payout_id": payout_id},
        )


class InsufficientBalanceException(BusinessRuleException):
    def __init__(self, requested: Decimal, available: Decimal):
        super().__init__(
            message=f"Insufficient balance. Available: ${available}",
            code="INSUFFICIENT_BALANCE",
            details={"requested": str(requested), "available": str(available)},
        )


class InsufficientBalanceAtSettlementException(BusinessRuleException):
    """Raised when the balance shrank between request and processing."""

    def __init__(self, payout_id: str, requested: Decimal, available: Decimal):
        super().__init__(
            message=(
                f"Unsettled balance {available} no longer covers payout amount {requested}"
            ),
            code="INSUFFICIENT_BALANCE_AT_SETTLEMENT",
            details={
                "payout_id": payout_id,
                "requested": str(requested),
                "available": str(available),
            },
        )


class UnauthorizedPayoutActionException(ForbiddenException):
    def __init__(self, payout_id: str, actor_id: str):
        super().__init__(
            message="You are not authorized to cancel this payout",
            code="UNAUTHORIZED_PAYOUT_ACTION",
            details={"payout_id": payout_id, "actor_id": actor_id},
        )


# Gateway exceptions


class GatewayFailureException(ServiceException):
    """Wraps a definitive error from a charge, refund or transfer call."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(
        self,
        operation: str,
        message: str,
        *,
        code: str = "GATEWAY_FAILURE",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.operation = operation
        super().__init__(
            message=f"Gateway {operation} failed: {message}",
            code=code,
            details={"operation": operation, **(details or {})},
        )


class GatewayTimeoutException(GatewayFailureException):
    """The gateway did not answer; the outcome of the call is unknown."""

    status_code = status.HTTP_504_GATEWAY_TIMEOUT

    def __init__(self, operation: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(operation, message, code="GATEWAY_TIMEOUT", details=details)


class PayoutProcessingFailedException(ServiceException):
    """Raised after a payout was marked FAILED so the caller knows settlement did not happen."""

    def __init__(self, payout_id: str, payout_number: str, reason: str):
        super().__init__(
            message=f"Payout processing failed: {reason}",
            code="PAYOUT_PROCESSING_FAILED",
            details={"payout_id": payout_id, "payout_number": payout_number},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """


class IntegrityConflict(RepositoryException):
    """A unique or foreign-key constraint rejected a write."""

    def __init__(self, message: str, constraint_text: str = ""):
        super().__init__(message)
        self.constraint_text = constraint_text

    def mentions(self, *fragments: str) -> bool:
        text = self.constraint_text.lower()
        return any(fragment.lower() in text for fragment in fragments)
