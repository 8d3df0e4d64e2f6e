# backend/app/services/earnings_service.py
"""
Earnings aggregation queries.

Read-only rollups over the ledger used by the settlement engine, instructor
dashboards and reporting. Nothing here writes.
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from app.repositories.factory import RepositoryFactory
from app.repositories.transaction_repository import TransactionRepository
from app.schemas.ledger import (
    CourseEarnings,
    EarningsSummary,
    MonthlyEarnings,
    PayoutTotals,
    PendingEarnings,
    UnsettledBalance,
)
from app.services.base import BaseService
from app.utils.money import ZERO, round_money

logger = logging.getLogger(__name__)


def unsettled_balance_for(
    repository: TransactionRepository, instructor_id: str
) -> UnsettledBalance:
    """Build the unsettled balance for one instructor. Zeros when nothing is pending."""
    total, count, oldest = repository.get_unsettled_totals(instructor_id)
    return UnsettledBalance(
        instructor_id=instructor_id,
        pending_amount=round_money(total),
        pending_transaction_count=count,
        oldest_unsettled_at=oldest,
    )


def _refund_rate(refunds: int, sales: int) -> float:
    return round(refunds / sales * 100, 2) if sales else 0.0


class EarningsService(BaseService):
    """Read-only earnings rollups for an instructor."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.transaction_repository = RepositoryFactory.create_transaction_repository(db)
        self.payout_repository = RepositoryFactory.create_payout_repository(db)

    @BaseService.measure_operation("get_unsettled_balance")
    def get_unsettled_balance(self, instructor_id: str) -> UnsettledBalance:
        return unsettled_balance_for(self.transaction_repository, instructor_id)

    @BaseService.measure_operation("get_monthly_breakdown")
    def get_monthly_breakdown(
        self,
        instructor_id: str,
        *,
        unsettled_only: bool = True,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[MonthlyEarnings]:
        """Net earnings per calendar month, newest month first."""
        rows = self.transaction_repository.get_monthly_breakdown(
            instructor_id, unsettled_only=unsettled_only, start=start, end=end
        )
        return [
            MonthlyEarnings(
                month=month,
                net_amount=round_money(net),
                sales_count=sales,
                refund_count=refunds,
            )
            for month, net, sales, refunds in rows
        ]

    @BaseService.measure_operation("get_course_breakdown")
    def get_course_breakdown(
        self,
        instructor_id: str,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[CourseEarnings]:
        """Net earnings per course, highest earner first."""
        rows = self.transaction_repository.get_course_breakdown(
            instructor_id, start=start, end=end
        )
        return [
            CourseEarnings(
                course_id=course_id,
                net_earnings=round_money(net),
                sales_count=sales,
                refund_count=refunds,
                refund_rate=_refund_rate(refunds, sales),
            )
            for course_id, net, sales, refunds in rows
        ]

    @BaseService.measure_operation("get_pending_earnings")
    def get_pending_earnings(self, instructor_id: str) -> PendingEarnings:
        """Current unsettled balance with its month-by-month composition."""
        return PendingEarnings(
            balance=self.get_unsettled_balance(instructor_id),
            by_month=self.get_monthly_breakdown(instructor_id, unsettled_only=True),
        )

    @BaseService.measure_operation("get_earnings_summary")
    def get_earnings_summary(
        self,
        instructor_id: str,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> EarningsSummary:
        """Lifetime (or windowed) earnings, refunds and payout history."""
        earned, refunded, sales, refunds = self.transaction_repository.get_earnings_totals(
            instructor_id, start=start, end=end
        )
        count, paid_out, avg_amount, avg_fee = self.payout_repository.get_completed_totals(
            instructor_id, start=start, end=end
        )

        net = round_money(earned - refunded)
        average_per_sale = round_money(earned / sales) if sales else ZERO

        return EarningsSummary(
            instructor_id=instructor_id,
            total_earnings=round_money(earned),
            total_refunds=round_money(refunded),
            net_earnings=net,
            total_sales=sales,
            total_refund_count=refunds,
            average_earnings_per_sale=average_per_sale,
            refund_rate=_refund_rate(refunds, sales),
            payouts=PayoutTotals(
                total_payouts=count,
                total_paid_out=round_money(paid_out),
                average_payout_amount=round_money(avg_amount),
                average_processing_fee=round_money(avg_fee),
            ),
            unsettled=self.get_unsettled_balance(instructor_id),
        )


__all__ = ["EarningsService", "unsettled_balance_for"]
