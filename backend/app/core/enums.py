# backend/app/core/enums.py
"""
Core enums for the payments ledger.

Statuses and kinds are stored as plain strings in the database; these enums
are the single source of the allowed values and transitions.
"""

from enum import Enum
from typing import Dict, FrozenSet


class TransactionKind(str, Enum):
    """Direction of a monetary movement."""

    PAYMENT = "PAYMENT"
    REFUND = "REFUND"


class TransactionStatus(str, Enum):
    """
    Lifecycle of a ledger transaction.

    create -> COMPLETED -> REFUNDED
    create -> FAILED
    COMPLETED -> DISPUTED (chargeback, never settled)
    """

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    DISPUTED = "DISPUTED"


class PayoutStatus(str, Enum):
    """Lifecycle of a payout batch."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PAYOUT_STATUSES

    def can_transition_to(self, target: "PayoutStatus") -> bool:
        return target in PAYOUT_TRANSITIONS.get(self, frozenset())


class PayoutMethod(str, Enum):
    """Supported payout destinations."""

    BANK_TRANSFER = "bank_transfer"
    PAYPAL = "paypal"
    STRIPE = "stripe"
    EXPRESS = "express"
    OTHER = "other"


PAYOUT_TRANSITIONS: Dict[PayoutStatus, FrozenSet[PayoutStatus]] = {
    PayoutStatus.PENDING: frozenset({PayoutStatus.PROCESSING, PayoutStatus.CANCELLED}),
    PayoutStatus.PROCESSING: frozenset({PayoutStatus.COMPLETED, PayoutStatus.FAILED}),
    PayoutStatus.COMPLETED: frozenset(),
    PayoutStatus.FAILED: frozenset(),
    PayoutStatus.CANCELLED: frozenset(),
}

TERMINAL_PAYOUT_STATUSES: FrozenSet[PayoutStatus] = frozenset(
    {PayoutStatus.COMPLETED, PayoutStatus.FAILED, PayoutStatus.CANCELLED}
)

# Payment rows that still count towards the instructor's unsettled balance.
# REFUNDED originals stay in: their REFUND row carries the negative share.
SETTLEABLE_PAYMENT_STATUSES: FrozenSet[TransactionStatus] = frozenset(
    {TransactionStatus.COMPLETED, TransactionStatus.REFUNDED}
)
