# backend/app/repositories/__init__.py
"""
Data access for the payments ledger.

- TransactionRepository: ledger rows, settlement locks and earnings aggregates
- PayoutRepository: payout batches and payout totals
- PayoutAccountRepository: instructor payout destinations

Usage:
    from app.repositories import RepositoryFactory

    repository = RepositoryFactory.create_transaction_repository(db)
    total, count, oldest = repository.get_unsettled_totals(instructor_id)
"""

from .base_repository import BaseRepository
from .factory import RepositoryFactory
from .payout_repository import PayoutAccountRepository, PayoutRepository
from .transaction_repository import TransactionRepository

__all__ = [
    "BaseRepository",
    "RepositoryFactory",
    "TransactionRepository",
    "PayoutRepository",
    "PayoutAccountRepository",
]
