"""
Payment gateway boundary.

Services talk to the gateway through the ``PaymentGateway`` protocol so tests
can pass a fake. ``StripePaymentGateway`` is the production implementation.
Every Stripe error is translated at this boundary: connection problems become
``GatewayTimeoutException`` (outcome unknown), anything else becomes
``GatewayFailureException`` (definitive).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
import logging
from typing import Any, Callable, Dict, Optional, Protocol

import stripe

from app.core.config import settings
from app.core.exceptions import GatewayFailureException, GatewayTimeoutException
from app.monitoring.prometheus_metrics import prometheus_metrics
from app.utils.money import from_cents, to_cents

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChargeResult:
    charge_ref: str
    status: str
    amount: Decimal
    currency: str
    card_last4: Optional[str] = None


@dataclass(frozen=True)
class RefundResultRef:
    refund_ref: str
    status: str
    amount: Decimal


@dataclass(frozen=True)
class TransferResult:
    transfer_ref: str
    status: str
    amount: Decimal
    destination: Optional[str] = None


class PaymentGateway(Protocol):
    def charge(
        self,
        amount: Decimal,
        currency: str,
        payment_method_token: str,
        metadata: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> ChargeResult:
        ...

    def refund(
        self,
        charge_ref: str,
        amount: Decimal,
        reason: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> RefundResultRef:
        ...

    def transfer(
        self,
        destination: str,
        amount: Decimal,
        currency: str,
        metadata: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> TransferResult:
        ...


class StripePaymentGateway:
    """PaymentGateway backed by the Stripe SDK (PaymentIntents, Refunds, Connect transfers)."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        *,
        timeout_seconds: Optional[int] = None,
        max_network_retries: Optional[int] = None,
    ):
        if secret_key is None and settings.stripe_secret_key:
            secret_key = settings.stripe_secret_key.get_secret_value()
        if not secret_key:
            raise ValueError("Stripe secret key is not configured")

        stripe.api_key = secret_key
        stripe.max_network_retries = (
            max_network_retries
            if max_network_retries is not None
            else settings.stripe_max_network_retries
        )
        timeout = timeout_seconds or settings.stripe_timeout_seconds
        try:
            stripe.default_http_client = stripe.http_client.RequestsClient(timeout=timeout)
        except AttributeError:
            logger.warning("Stripe HTTP client customization unavailable; using SDK default")

    def _call(self, operation: str, func: Callable[..., Any], **kwargs: Any) -> Any:
        try:
            return func(**kwargs)
        except stripe.APIConnectionError as exc:
            prometheus_metrics.inc_gateway_error(operation)
            logger.error("Stripe %s timed out or lost connection: %s", operation, str(exc))
            raise GatewayTimeoutException(operation, str(exc)) from exc
        except stripe.StripeError as exc:
            prometheus_metrics.inc_gateway_error(operation)
            logger.error("Stripe %s failed: %s", operation, str(exc))
            raise GatewayFailureException(
                operation,
                getattr(exc, "user_message", None) or str(exc),
                details={"stripe_code": getattr(exc, "code", None)},
            ) from exc

    def charge(
        self,
        amount: Decimal,
        currency: str,
        payment_method_token: str,
        metadata: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> ChargeResult:
        intent = self._call(
            "charge",
            stripe.PaymentIntent.create,
            amount=to_cents(amount),
            currency=currency.lower(),
            payment_method=payment_method_token,
            confirm=True,
            automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
            metadata={k: str(v) for k, v in (metadata or {}).items()},
            idempotency_key=idempotency_key,
        )
        status = getattr(intent, "status", None)
        if status != "succeeded":
            prometheus_metrics.inc_gateway_error("charge")
            raise GatewayFailureException(
                "charge",
                f"payment intent status is {status}",
                details={"charge_ref": getattr(intent, "id", None), "status": status},
            )

        card_last4 = None
        charge = getattr(intent, "latest_charge", None)
        details = getattr(charge, "payment_method_details", None)
        card = getattr(details, "card", None)
        if card is not None:
            card_last4 = getattr(card, "last4", None)

        return ChargeResult(
            charge_ref=intent.id,
            status=status,
            amount=from_cents(intent.amount),
            currency=currency.upper(),
            card_last4=card_last4,
        )

    def refund(
        self,
        charge_ref: str,
        amount: Decimal,
        reason: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> RefundResultRef:
        refund = self._call(
            "refund",
            stripe.Refund.create,
            payment_intent=charge_ref,
            amount=to_cents(amount),
            reason="requested_by_customer",
            metadata={"reason": reason or ""},
            idempotency_key=idempotency_key,
        )
        return RefundResultRef(
            refund_ref=refund.id,
            status=getattr(refund, "status", "succeeded"),
            amount=from_cents(refund.amount),
        )

    def transfer(
        self,
        destination: str,
        amount: Decimal,
        currency: str,
        metadata: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> TransferResult:
        transfer = self._call(
            "transfer",
            stripe.Transfer.create,
            amount=to_cents(amount),
            currency=currency.lower(),
            destination=destination,
            metadata={k: str(v) for k, v in (metadata or {}).items()},
            idempotency_key=idempotency_key,
        )
        logger.info(
            "Issued payout transfer",
            extra={"destination": destination, "transfer_id": transfer.id},
        )
        return TransferResult(
            transfer_ref=transfer.id,
            status="paid",
            amount=from_cents(transfer.amount),
            destination=destination,
        )
