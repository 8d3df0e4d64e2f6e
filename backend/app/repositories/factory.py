# backend/app/repositories/factory.py
"""
Repository construction for the ledger services.

Services ask the factory for repositories instead of instantiating them, so a
test can swap one implementation without touching service code.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

if TYPE_CHECKING:
    from .payout_repository import PayoutAccountRepository, PayoutRepository
    from .transaction_repository import TransactionRepository


class RepositoryFactory:
    """Builds the ledger repositories bound to one session."""

    @staticmethod
    def create_transaction_repository(db: Session) -> "TransactionRepository":
        from .transaction_repository import TransactionRepository

        return TransactionRepository(db)

    @staticmethod
    def create_payout_repository(db: Session) -> "PayoutRepository":
        from .payout_repository import PayoutRepository

        return PayoutRepository(db)

    @staticmethod
    def create_payout_account_repository(db: Session) -> "PayoutAccountRepository":
        from .payout_repository import PayoutAccountRepository

        return PayoutAccountRepository(db)
