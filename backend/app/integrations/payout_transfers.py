"""
Payout transfer strategies.

The settlement engine hands a payout to the provider registered for its payout
method. Stripe payouts go out as Connect transfers; other methods are paid by
an operator and only recorded here.
"""

from __future__ import annotations

from decimal import Decimal
import logging
from typing import Dict, Mapping, Optional, Protocol

from app.core.enums import PayoutMethod
from app.core.exceptions import GatewayFailureException, ValidationException
from app.models.payout import Payout, PayoutAccount
from app.utils.money import round_money

from .payment_gateway import PaymentGateway, TransferResult

logger = logging.getLogger(__name__)


def transfer_amount(payout: Payout) -> Decimal:
    """What the instructor actually receives."""
    return round_money(payout.amount - (payout.processing_fee or 0))


class PayoutTransferProvider(Protocol):
    def send(self, payout: Payout, account: Optional[PayoutAccount]) -> TransferResult:
        ...


class StripeConnectTransferProvider:
    """Transfers the payout from the platform balance to the instructor's connected account."""

    def __init__(self, gateway: PaymentGateway):
        self.gateway = gateway

    def send(self, payout: Payout, account: Optional[PayoutAccount]) -> TransferResult:
        if account is None or not account.external_account_ref:
            raise GatewayFailureException(
                "transfer",
                "Instructor has no connected account",
                details={"payout_id": payout.id, "instructor_id": payout.instructor_id},
            )
        return self.gateway.transfer(
            account.external_account_ref,
            transfer_amount(payout),
            payout.currency,
            metadata={"payout_id": payout.id, "payout_number": payout.payout_number},
            idempotency_key=f"payout:{payout.id}",
        )


class ManualTransferProvider:
    """Records an operator-executed bank or PayPal settlement."""

    def send(self, payout: Payout, account: Optional[PayoutAccount]) -> TransferResult:
        reference = f"manual:{payout.payment_method}:{payout.payout_number}"
        logger.info(
            "Recorded manual payout settlement",
            extra={"payout_id": payout.id, "reference": reference},
        )
        return TransferResult(
            transfer_ref=reference,
            status="recorded",
            amount=transfer_amount(payout),
            destination=account.email if account is not None else None,
        )


class TransferRouter:
    """Maps each payout method to the provider that settles it."""

    def __init__(
        self,
        providers: Mapping[PayoutMethod, PayoutTransferProvider],
        default: Optional[PayoutTransferProvider] = None,
    ):
        self.providers: Dict[PayoutMethod, PayoutTransferProvider] = dict(providers)
        self.default = default

    @classmethod
    def with_gateway(cls, gateway: Optional[PaymentGateway]) -> "TransferRouter":
        """Stripe through Connect when a gateway is available, everything else manual."""
        manual = ManualTransferProvider()
        providers: Dict[PayoutMethod, PayoutTransferProvider] = {}
        if gateway is not None:
            providers[PayoutMethod.STRIPE] = StripeConnectTransferProvider(gateway)
        return cls(providers, default=manual)

    def provider_for(self, method: PayoutMethod) -> PayoutTransferProvider:
        provider = self.providers.get(method, self.default)
        if provider is None:
            raise ValidationException(
                f"No transfer provider configured for {method.value}",
                code="UNSUPPORTED_PAYOUT_METHOD",
                details={"payment_method": method.value},
            )
        return provider

    def send(self, payout: Payout, account: Optional[PayoutAccount]) -> TransferResult:
        return self.provider_for(PayoutMethod(payout.payment_method)).send(payout, account)
