# backend/app/repositories/payout_repository.py
"""
Payout Repository for the payments ledger.

Queries for payout batches and instructor payout accounts.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
import logging
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.core.enums import PayoutStatus
from app.core.exceptions import RepositoryException
from app.models.payout import Payout, PayoutAccount
from app.schemas.ledger import PayoutFilters
from app.utils.money import to_decimal

from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class PayoutRepository(BaseRepository[Payout]):
    """Repository for payout batches."""

    def __init__(self, db: Session):
        super().__init__(db, Payout)
        self.logger = logging.getLogger(__name__)

    def get_with_transactions(self, payout_id: str) -> Optional[Payout]:
        query = (
            self.db.query(Payout)
            .options(selectinload(Payout.transactions))
            .filter(Payout.id == payout_id)
            .populate_existing()
        )
        return self._execute_first(query)

    def get_pending_for_instructor(self, instructor_id: str) -> Optional[Payout]:
        return self.find_one_by(instructor_id=instructor_id, status=PayoutStatus.PENDING.value)

    def count_with_number_prefix(self, prefix: str) -> int:
        """Number of payouts whose number starts with ``prefix`` (e.g. ``PAYOUT-2024-``)."""
        query = self.db.query(func.count(Payout.id)).filter(
            Payout.payout_number.like(f"{prefix}%")
        )
        return int(self._execute_scalar(query) or 0)

    def list_for_instructor(self, instructor_id: str, skip: int = 0, limit: int = 20):
        query = (
            self.db.query(Payout)
            .filter(Payout.instructor_id == instructor_id)
            .order_by(Payout.requested_at.desc(), Payout.id.desc())
        )
        return self._paginate(query, skip, limit)

    def list_filtered(self, filters: PayoutFilters, skip: int = 0, limit: int = 20):
        query = self.db.query(Payout)
        if filters.status is not None:
            query = query.filter(Payout.status == filters.status.value)
        if filters.instructor_id:
            query = query.filter(Payout.instructor_id == filters.instructor_id)
        if filters.start_date:
            query = query.filter(Payout.requested_at >= filters.start_date)
        if filters.end_date:
            query = query.filter(Payout.requested_at <= filters.end_date)
        query = query.order_by(Payout.requested_at.desc(), Payout.id.desc())
        return self._paginate(query, skip, limit)

    def get_completed_totals(
        self,
        instructor_id: str,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Tuple[int, Decimal, Decimal, Decimal]:
        """(count, total amount, average amount, average fee) over COMPLETED payouts."""
        query = self.db.query(
            func.count(Payout.id),
            func.coalesce(func.sum(Payout.amount), 0),
            func.coalesce(func.avg(Payout.amount), 0),
            func.coalesce(func.avg(Payout.processing_fee), 0),
        ).filter(
            Payout.instructor_id == instructor_id,
            Payout.status == PayoutStatus.COMPLETED.value,
        )
        if start:
            query = query.filter(Payout.requested_at >= start)
        if end:
            query = query.filter(Payout.requested_at <= end)
        try:
            count, total, avg_amount, avg_fee = query.one()
        except SQLAlchemyError as exc:
            self.logger.error("Failed to compute payout totals: %s", str(exc))
            raise RepositoryException("Failed to compute payout totals") from exc
        return int(count or 0), to_decimal(total), to_decimal(avg_amount), to_decimal(avg_fee)


class PayoutAccountRepository(BaseRepository[PayoutAccount]):
    """Repository for instructor payout destinations."""

    def __init__(self, db: Session):
        super().__init__(db, PayoutAccount)
        self.logger = logging.getLogger(__name__)

    def get_by_instructor(self, instructor_id: str) -> Optional[PayoutAccount]:
        return self.find_one_by(instructor_id=instructor_id)

    def get_active_for_instructor(self, instructor_id: str) -> Optional[PayoutAccount]:
        return self.find_one_by(instructor_id=instructor_id, is_active=True)

    def list_active(self) -> List[PayoutAccount]:
        query = (
            self.db.query(PayoutAccount)
            .filter(PayoutAccount.is_active.is_(True))
            .order_by(PayoutAccount.instructor_id.asc())
        )
        return self._execute_query(query)
