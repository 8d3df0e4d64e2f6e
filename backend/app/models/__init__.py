"""
Database models for the payments ledger.

- Transaction: payments and refunds recorded against courses
- Payout: settlement batches of instructor earnings
- PayoutAccount: instructor payout destinations
"""

from .payout import Payout, PayoutAccount
from .transaction import Transaction

__all__ = [
    "Payout",
    "PayoutAccount",
    "Transaction",
]
