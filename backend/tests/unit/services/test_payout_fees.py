from __future__ import annotations

from decimal import Decimal

import pytest

from app.core.enums import PayoutMethod
from app.services.payout_fees import FeeRule, PayoutFeeSchedule


class TestPayoutFeeSchedule:
    @pytest.mark.parametrize(
        ("method", "amount", "expected"),
        [
            (PayoutMethod.PAYPAL, "100.00", "3.20"),
            (PayoutMethod.PAYPAL, "10.00", "1.00"),
            (PayoutMethod.STRIPE, "100.00", "2.50"),
            (PayoutMethod.STRIPE, "20.00", "1.00"),
            (PayoutMethod.BANK_TRANSFER, "999.99", "2.50"),
            (PayoutMethod.BANK_TRANSFER, "1000.00", "0.00"),
            (PayoutMethod.EXPRESS, "100.00", "5.00"),
            (PayoutMethod.EXPRESS, "400.00", "14.00"),
            (PayoutMethod.OTHER, "200.00", "4.00"),
        ],
    )
    def test_default_rules(self, method: PayoutMethod, amount: str, expected: str) -> None:
        assert PayoutFeeSchedule().fee_for(method, amount) == Decimal(expected)

    def test_unknown_method_falls_back_to_other(self) -> None:
        schedule = PayoutFeeSchedule(rules={PayoutMethod.OTHER: FeeRule(fixed=Decimal("7"))})

        assert schedule.fee_for(PayoutMethod.PAYPAL, "50") == Decimal("7.00")

    def test_empty_schedule_charges_nothing(self) -> None:
        assert PayoutFeeSchedule(rules={}).fee_for(PayoutMethod.PAYPAL, "50") == Decimal("0")


class TestFeeRule:
    def test_fee_rounds_half_up(self) -> None:
        rule = FeeRule(percentage=Decimal("2.5"))

        assert rule.fee_for("10.10") == Decimal("0.25")
        assert rule.fee_for("10.30") == Decimal("0.26")
