"""
Read models returned by the ledger, settlement and earnings services.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
import math
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from app.core.enums import PayoutStatus, TransactionKind, TransactionStatus

from ._strict_base import FrozenModel, StrictModel

T = TypeVar("T")


class CommissionSplit(FrozenModel):
    """Revenue split for one gross payment."""

    gross_amount: Decimal
    gateway_fee: Decimal
    net_amount: Decimal
    effective_percentage: Decimal
    platform_commission: Decimal
    instructor_earnings: Decimal


class UnsettledBalance(FrozenModel):
    """Earnings not yet allocated to a payout. Always populated, never None."""

    instructor_id: str
    pending_amount: Decimal = Decimal("0.00")
    pending_transaction_count: int = 0
    oldest_unsettled_at: Optional[datetime] = None


class MonthlyEarnings(FrozenModel):
    month: str = Field(description="Calendar month, YYYY-MM")
    net_amount: Decimal
    sales_count: int
    refund_count: int


class CourseEarnings(FrozenModel):
    course_id: str
    net_earnings: Decimal
    sales_count: int
    refund_count: int
    refund_rate: float = Field(description="Refunds per 100 sales")


class PendingEarnings(FrozenModel):
    balance: UnsettledBalance
    by_month: List[MonthlyEarnings] = Field(default_factory=list)


class PayoutTotals(FrozenModel):
    total_payouts: int = 0
    total_paid_out: Decimal = Decimal("0.00")
    average_payout_amount: Decimal = Decimal("0.00")
    average_processing_fee: Decimal = Decimal("0.00")


class EarningsSummary(FrozenModel):
    instructor_id: str
    total_earnings: Decimal
    total_refunds: Decimal
    net_earnings: Decimal
    total_sales: int
    total_refund_count: int
    average_earnings_per_sale: Decimal
    refund_rate: float
    payouts: PayoutTotals
    unsettled: UnsettledBalance


class Page(BaseModel, Generic[T]):
    """One page of a listing, with the totals needed to render a pager."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    items: List[T]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.pages


class TransactionFilters(StrictModel):
    kind: Optional[TransactionKind] = None
    status: Optional[TransactionStatus] = None
    instructor_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class PayoutFilters(StrictModel):
    status: Optional[PayoutStatus] = None
    instructor_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


MAX_PAGE_SIZE = 100


def page_window(page: int, limit: int) -> tuple[int, int, int]:
    """Clamp paging input and return ``(page, limit, offset)``."""
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 1), 1), MAX_PAGE_SIZE)
    return page, limit, (page - 1) * limit
