# backend/app/repositories/transaction_repository.py
"""
Transaction Repository for the payments ledger.

Owns every query against the ``transactions`` table: duplicate checks,
row locks used by refunds and settlement, the unsettled-balance aggregate,
payout tagging and the earnings breakdowns.

A row counts towards an instructor's unsettled balance when it has no
payout yet and is either a COMPLETED/REFUNDED payment or a COMPLETED refund.
Disputed, failed and pending rows never count.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, List, Optional, Sequence, Tuple

from sqlalchemy import and_, case, func, literal_column, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session

from app.core.enums import SETTLEABLE_PAYMENT_STATUSES, TransactionKind, TransactionStatus
from app.core.exceptions import RepositoryException
from app.models.transaction import Transaction
from app.models.types import now_utc
from app.schemas.ledger import TransactionFilters
from app.utils.money import to_decimal

from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

_PAYMENT = TransactionKind.PAYMENT.value
_REFUND = TransactionKind.REFUND.value
_COMPLETED = TransactionStatus.COMPLETED.value


def settleable_clause() -> Any:
    """SQL condition for rows whose earnings belong in the unsettled balance."""
    return or_(
        and_(
            Transaction.kind == _PAYMENT,
            Transaction.status.in_([s.value for s in SETTLEABLE_PAYMENT_STATUSES]),
        ),
        and_(Transaction.kind == _REFUND, Transaction.status == _COMPLETED),
    )


class TransactionRepository(BaseRepository[Transaction]):
    """Repository for ledger transactions."""

    def __init__(self, db: Session):
        super().__init__(db, Transaction)
        self.logger = logging.getLogger(__name__)

    # Lookups

    def find_completed_payment(self, payer_id: str, course_id: str) -> Optional[Transaction]:
        """Return the completed payment for a payer/course pair, if one exists."""
        query = self.db.query(Transaction).filter(
            Transaction.payer_id == payer_id,
            Transaction.course_id == course_id,
            Transaction.kind == _PAYMENT,
            Transaction.status == _COMPLETED,
        )
        return self._execute_first(query)

    def get_by_external_ref(self, external_charge_ref: str) -> Optional[Transaction]:
        return self.find_one_by(external_charge_ref=external_charge_ref)

    def list_by_payout(self, payout_id: str) -> List[Transaction]:
        query = (
            self.db.query(Transaction)
            .filter(Transaction.payout_id == payout_id)
            .order_by(Transaction.created_at.asc(), Transaction.id.asc())
        )
        return self._execute_query(query)

    def list_refunds_of(self, transaction_id: str) -> List[Transaction]:
        query = self.db.query(Transaction).filter(Transaction.refund_of_id == transaction_id)
        return self._execute_query(query)

    # Settlement

    def _unsettled_query(self, instructor_id: str) -> Query:
        return self.db.query(Transaction).filter(
            Transaction.instructor_id == instructor_id,
            Transaction.payout_id.is_(None),
            settleable_clause(),
        )

    def get_unsettled_totals(
        self, instructor_id: str
    ) -> Tuple[Decimal, int, Optional[datetime]]:
        """
        Aggregate the unsettled balance.

        Returns:
            (sum of instructor earnings, number of payment rows, oldest payment timestamp).
            Zeros and None when nothing is unsettled.
        """
        try:
            total = (
                self.db.query(func.coalesce(func.sum(Transaction.instructor_earnings), 0))
                .filter(
                    Transaction.instructor_id == instructor_id,
                    Transaction.payout_id.is_(None),
                    settleable_clause(),
                )
                .scalar()
            )
            count, oldest = (
                self.db.query(func.count(Transaction.id), func.min(Transaction.created_at))
                .filter(
                    Transaction.instructor_id == instructor_id,
                    Transaction.payout_id.is_(None),
                    Transaction.kind == _PAYMENT,
                    Transaction.status.in_([s.value for s in SETTLEABLE_PAYMENT_STATUSES]),
                )
                .one()
            )
            return to_decimal(total), int(count or 0), oldest
        except SQLAlchemyError as exc:
            self.logger.error("Failed to compute unsettled balance: %s", str(exc))
            raise RepositoryException("Failed to compute unsettled balance") from exc

    def get_settlement_candidates(
        self, instructor_id: str, *, lock: bool = True
    ) -> List[Transaction]:
        """
        Unsettled rows in allocation order (oldest first, id as tie-break).

        With ``lock`` the rows stay locked until the surrounding transaction ends
        so a concurrent settlement cannot claim them.
        """
        query = self._unsettled_query(instructor_id).order_by(
            Transaction.created_at.asc(), Transaction.id.asc()
        )
        if lock:
            query = query.with_for_update()
        return self._execute_query(query)

    def tag_with_payout(self, transaction_ids: Sequence[str], payout_id: str) -> int:
        """
        Point the given rows at a payout.

        Rows already carrying a payout are left alone; the return value is the
        number of rows actually tagged.
        """
        if not transaction_ids:
            return 0
        try:
            return (
                self.db.query(Transaction)
                .filter(
                    Transaction.id.in_(list(transaction_ids)),
                    Transaction.payout_id.is_(None),
                )
                .update(
                    {Transaction.payout_id: payout_id, Transaction.updated_at: now_utc()},
                    synchronize_session="evaluate",
                )
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to tag transactions for payout %s: %s", payout_id, exc)
            raise RepositoryException("Failed to tag transactions for payout") from exc

    # Listings

    def list_for_payer(self, payer_id: str, skip: int = 0, limit: int = 20):
        query = (
            self.db.query(Transaction)
            .filter(Transaction.payer_id == payer_id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        )
        return self._paginate(query, skip, limit)

    def list_filtered(self, filters: TransactionFilters, skip: int = 0, limit: int = 20):
        query = self.db.query(Transaction)
        if filters.kind is not None:
            query = query.filter(Transaction.kind == filters.kind.value)
        if filters.status is not None:
            query = query.filter(Transaction.status == filters.status.value)
        if filters.instructor_id:
            query = query.filter(Transaction.instructor_id == filters.instructor_id)
        if filters.start_date:
            query = query.filter(Transaction.created_at >= filters.start_date)
        if filters.end_date:
            query = query.filter(Transaction.created_at <= filters.end_date)
        query = query.order_by(Transaction.created_at.desc(), Transaction.id.desc())
        return self._paginate(query, skip, limit)

    # Earnings aggregates

    def _month_expression(self) -> Any:
        # Format strings are inlined so GROUP BY matches the SELECT expression.
        if self.dialect_name == "postgresql":
            return func.to_char(Transaction.created_at, literal_column("'YYYY-MM'"))
        return func.strftime(literal_column("'%Y-%m'"), Transaction.created_at)

    @staticmethod
    def _apply_window(
        query: Query, start: Optional[datetime], end: Optional[datetime]
    ) -> Query:
        if start:
            query = query.filter(Transaction.created_at >= start)
        if end:
            query = query.filter(Transaction.created_at <= end)
        return query

    def get_monthly_breakdown(
        self,
        instructor_id: str,
        *,
        unsettled_only: bool = True,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Tuple[str, Decimal, int, int]]:
        """Rows of (YYYY-MM, net earnings, sales, refunds), newest month first."""
        month = self._month_expression().label("month")
        query = self.db.query(
            month,
            func.coalesce(func.sum(Transaction.instructor_earnings), 0).label("net_amount"),
            func.count(case((Transaction.kind == _PAYMENT, Transaction.id))).label("sales"),
            func.count(case((Transaction.kind == _REFUND, Transaction.id))).label("refunds"),
        ).filter(Transaction.instructor_id == instructor_id, settleable_clause())
        if unsettled_only:
            query = query.filter(Transaction.payout_id.is_(None))
        query = self._apply_window(query, start, end)
        query = query.group_by(month).order_by(month.desc())
        try:
            return [
                (str(row.month), to_decimal(row.net_amount), int(row.sales), int(row.refunds))
                for row in query.all()
            ]
        except SQLAlchemyError as exc:
            self.logger.error("Failed to build monthly breakdown: %s", str(exc))
            raise RepositoryException("Failed to build monthly breakdown") from exc

    def get_course_breakdown(
        self,
        instructor_id: str,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Tuple[str, Decimal, int, int]]:
        """Rows of (course id, net earnings, sales, refunds), highest earner first."""
        net = func.coalesce(func.sum(Transaction.instructor_earnings), 0).label("net_amount")
        query = self.db.query(
            Transaction.course_id,
            net,
            func.count(case((Transaction.kind == _PAYMENT, Transaction.id))).label("sales"),
            func.count(case((Transaction.kind == _REFUND, Transaction.id))).label("refunds"),
        ).filter(Transaction.instructor_id == instructor_id, settleable_clause())
        query = self._apply_window(query, start, end)
        query = query.group_by(Transaction.course_id).order_by(
            net.desc(), Transaction.course_id.asc()
        )
        try:
            return [
                (row.course_id, to_decimal(row.net_amount), int(row.sales), int(row.refunds))
                for row in query.all()
            ]
        except SQLAlchemyError as exc:
            self.logger.error("Failed to build course breakdown: %s", str(exc))
            raise RepositoryException("Failed to build course breakdown") from exc

    def get_earnings_totals(
        self,
        instructor_id: str,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Tuple[Decimal, Decimal, int, int]:
        """
        Lifetime (or windowed) totals.

        Returns:
            (gross earnings from sales, refunded earnings as a positive amount,
            number of sales, number of refunds)
        """
        query = self.db.query(
            func.coalesce(
                func.sum(
                    case(
                        (Transaction.kind == _PAYMENT, Transaction.instructor_earnings),
                        else_=0,
                    )
                ),
                0,
            ),
            func.coalesce(
                func.sum(
                    case(
                        (Transaction.kind == _REFUND, -Transaction.instructor_earnings),
                        else_=0,
                    )
                ),
                0,
            ),
            func.count(case((Transaction.kind == _PAYMENT, Transaction.id))),
            func.count(case((Transaction.kind == _REFUND, Transaction.id))),
        ).filter(Transaction.instructor_id == instructor_id, settleable_clause())
        query = self._apply_window(query, start, end)
        try:
            earned, refunded, sales, refunds = query.one()
        except SQLAlchemyError as exc:
            self.logger.error("Failed to compute earnings totals: %s", str(exc))
            raise RepositoryException("Failed to compute earnings totals") from exc
        return to_decimal(earned), to_decimal(refunded), int(sales or 0), int(refunds or 0)
