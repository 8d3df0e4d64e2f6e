# backend/app/schemas/__init__.py
"""
Pydantic schemas for the payments ledger.

Read models returned by services and the typed views over JSON metadata.
"""

from .ledger import (
    CommissionSplit,
    CourseEarnings,
    EarningsSummary,
    MonthlyEarnings,
    Page,
    PayoutFilters,
    PayoutTotals,
    PendingEarnings,
    TransactionFilters,
    UnsettledBalance,
    page_window,
)
from .metadata import PayoutMetadata, TransactionMetadata

__all__ = [
    "CommissionSplit",
    "CourseEarnings",
    "EarningsSummary",
    "MonthlyEarnings",
    "Page",
    "PayoutFilters",
    "PayoutMetadata",
    "PayoutTotals",
    "PendingEarnings",
    "TransactionFilters",
    "TransactionMetadata",
    "UnsettledBalance",
    "page_window",
]
