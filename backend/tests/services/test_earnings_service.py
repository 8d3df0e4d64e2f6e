from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from app.core.enums import PayoutStatus, TransactionKind, TransactionStatus
from app.schemas.ledger import UnsettledBalance
from app.services.earnings_service import EarningsService


def at(year: int, month: int, day: int) -> datetime:
    return datetime(year, month, day, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def ledger(make_transaction, make_payout) -> dict:
    """
    inst-1 history across January and February 2024.

    January: course-a 80 (later partly refunded), course-b 40, course-c 60 (already paid out)
    February: course-a 80, a 20 refund against the January course-a sale
    Noise: a disputed and a failed sale, plus another instructor's sale
    """
    payout = make_payout(
        "inst-1",
        "60.00",
        status=PayoutStatus.COMPLETED,
        processing_fee="2.50",
        requested_at=at(2024, 1, 31),
    )
    jan_a = make_transaction(
        "inst-1",
        "80.00",
        course_id="course-a",
        status=TransactionStatus.REFUNDED,
        created_at=at(2024, 1, 10),
    )
    rows = {
        "payout": payout,
        "jan_a": jan_a,
        "jan_b": make_transaction(
            "inst-1", "40.00", course_id="course-b", created_at=at(2024, 1, 20)
        ),
        "jan_c": make_transaction(
            "inst-1",
            "60.00",
            course_id="course-c",
            created_at=at(2024, 1, 15),
            payout_id=payout.id,
        ),
        "feb_a": make_transaction(
            "inst-1", "80.00", course_id="course-a", created_at=at(2024, 2, 5)
        ),
        "feb_refund": make_transaction(
            "inst-1",
            "-20.00",
            amount="25.00",
            commission="-5.00",
            kind=TransactionKind.REFUND,
            course_id="course-a",
            payer_id=jan_a.payer_id,
            created_at=at(2024, 2, 10),
            refund_of_id=jan_a.id,
        ),
    }
    make_transaction(
        "inst-1",
        "50.00",
        course_id="course-b",
        status=TransactionStatus.DISPUTED,
        created_at=at(2024, 2, 12),
    )
    make_transaction(
        "inst-1",
        "30.00",
        course_id="course-d",
        status=TransactionStatus.FAILED,
        created_at=at(2024, 2, 14),
    )
    make_transaction("inst-2", "999.00", course_id="course-a", created_at=at(2024, 2, 1))
    return rows


@pytest.fixture
def service(db) -> EarningsService:
    return EarningsService(db)


class TestUnsettledBalance:
    def test_balance_excludes_settled_and_unsettleable_rows(
        self, service: EarningsService, ledger
    ) -> None:
        balance = service.get_unsettled_balance("inst-1")

        assert balance.pending_amount == Decimal("180.00")
        assert balance.pending_transaction_count == 3

    def test_no_history_is_zero_not_none(self, service: EarningsService) -> None:
        balance = service.get_unsettled_balance("nobody")

        assert isinstance(balance, UnsettledBalance)
        assert balance.pending_amount == Decimal("0")
        assert balance.pending_transaction_count == 0
        assert balance.oldest_unsettled_at is None


class TestMonthlyBreakdown:
    def test_unsettled_months_newest_first(self, service: EarningsService, ledger) -> None:
        months = service.get_monthly_breakdown("inst-1")

        assert [m.month for m in months] == ["2024-02", "2024-01"]
        feb, jan = months
        assert feb.net_amount == Decimal("60.00")
        assert (feb.sales_count, feb.refund_count) == (1, 1)
        assert jan.net_amount == Decimal("120.00")
        assert (jan.sales_count, jan.refund_count) == (2, 0)

    def test_including_settled_rows(self, service: EarningsService, ledger) -> None:
        months = service.get_monthly_breakdown("inst-1", unsettled_only=False)

        jan = next(m for m in months if m.month == "2024-01")
        assert jan.net_amount == Decimal("180.00")
        assert jan.sales_count == 3

    def test_window(self, service: EarningsService, ledger) -> None:
        months = service.get_monthly_breakdown(
            "inst-1", start=at(2024, 1, 1), end=at(2024, 1, 31)
        )

        assert [m.month for m in months] == ["2024-01"]

    def test_empty(self, service: EarningsService) -> None:
        assert service.get_monthly_breakdown("nobody") == []


class TestCourseBreakdown:
    def test_highest_earner_first(self, service: EarningsService, ledger) -> None:
        courses = service.get_course_breakdown("inst-1")

        assert [c.course_id for c in courses] == ["course-a", "course-c", "course-b"]
        course_a = courses[0]
        assert course_a.net_earnings == Decimal("140.00")
        assert (course_a.sales_count, course_a.refund_count) == (2, 1)
        assert course_a.refund_rate == 50.0
        assert courses[2].net_earnings == Decimal("40.00")
        assert courses[2].refund_rate == 0.0

    def test_window_from_february(self, service: EarningsService, ledger) -> None:
        courses = service.get_course_breakdown("inst-1", start=at(2024, 2, 1))

        assert [(c.course_id, c.net_earnings) for c in courses] == [
            ("course-a", Decimal("60.00"))
        ]


class TestPendingEarnings:
    def test_balance_with_monthly_composition(self, service: EarningsService, ledger) -> None:
        pending = service.get_pending_earnings("inst-1")

        assert pending.balance.pending_amount == Decimal("180.00")
        assert sum(m.net_amount for m in pending.by_month) == pending.balance.pending_amount


class TestEarningsSummary:
    def test_lifetime_summary(self, service: EarningsService, ledger) -> None:
        summary = service.get_earnings_summary("inst-1")

        assert summary.total_earnings == Decimal("260.00")
        assert summary.total_refunds == Decimal("20.00")
        assert summary.net_earnings == Decimal("240.00")
        assert summary.total_sales == 4
        assert summary.total_refund_count == 1
        assert summary.average_earnings_per_sale == Decimal("65.00")
        assert summary.refund_rate == 25.0
        assert summary.payouts.total_payouts == 1
        assert summary.payouts.total_paid_out == Decimal("60.00")
        assert summary.payouts.average_payout_amount == Decimal("60.00")
        assert summary.payouts.average_processing_fee == Decimal("2.50")
        assert summary.unsettled.pending_amount == Decimal("180.00")
        assert summary.unsettled.pending_transaction_count == 3

    def test_windowed_summary(self, service: EarningsService, ledger) -> None:
        summary = service.get_earnings_summary("inst-1", start=at(2024, 2, 1))

        assert summary.total_earnings == Decimal("80.00")
        assert summary.total_refunds == Decimal("20.00")
        assert summary.net_earnings == Decimal("60.00")
        assert summary.payouts.total_payouts == 0
        # Unsettled balance is always current, never windowed
        assert summary.unsettled.pending_amount == Decimal("180.00")

    def test_pending_and_cancelled_payouts_not_counted(
        self, service: EarningsService, ledger, make_payout
    ) -> None:
        make_payout("inst-1", "10.00", status=PayoutStatus.CANCELLED)
        make_payout("inst-1", "20.00")

        assert service.get_earnings_summary("inst-1").payouts.total_payouts == 1

    def test_no_history(self, service: EarningsService) -> None:
        summary = service.get_earnings_summary("nobody")

        assert summary.total_earnings == Decimal("0")
        assert summary.net_earnings == Decimal("0")
        assert summary.total_sales == 0
        assert summary.average_earnings_per_sale == Decimal("0")
        assert summary.refund_rate == 0.0
        assert summary.payouts.total_payouts == 0
        assert summary.unsettled.pending_amount == Decimal("0")
