"""External service integrations for the payments ledger."""

from .payment_gateway import (
    ChargeResult,
    PaymentGateway,
    RefundResultRef,
    StripePaymentGateway,
    TransferResult,
)
from .payout_transfers import (
    ManualTransferProvider,
    PayoutTransferProvider,
    StripeConnectTransferProvider,
    TransferRouter,
)

__all__ = [
    "ChargeResult",
    "ManualTransferProvider",
    "PaymentGateway",
    "PayoutTransferProvider",
    "RefundResultRef",
    "StripeConnectTransferProvider",
    "StripePaymentGateway",
    "TransferResult",
    "TransferRouter",
]
