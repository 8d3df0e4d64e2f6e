from __future__ import annotations

from decimal import Decimal

import pytest

from app.core.config import Settings
from app.core.exceptions import InvalidAmountException
from app.services.commission_calculator import CommissionCalculator, CommissionConfig


def D(value: str) -> Decimal:
    return Decimal(value)


class TestCalculateSplit:
    def test_standard_rate_split(self) -> None:
        split = CommissionCalculator().calculate_split(D("100.00"))

        assert split.gross_amount == D("100.00")
        assert split.gateway_fee == D("3.20")
        assert split.net_amount == D("96.80")
        assert split.effective_percentage == D("20")
        assert split.platform_commission == D("19.36")
        assert split.instructor_earnings == D("77.44")

    def test_parts_add_up_to_gross(self) -> None:
        calculator = CommissionCalculator()
        for gross in ("12.34", "99.99", "250.00", "1234.56"):
            split = calculator.calculate_split(gross)
            total = split.gateway_fee + split.platform_commission + split.instructor_earnings
            assert total == split.gross_amount

    def test_tier1_discount_applies_at_threshold(self) -> None:
        split = CommissionCalculator().calculate_split(D("200.00"))

        assert split.effective_percentage == D("18")
        assert split.gateway_fee == D("6.10")
        assert split.platform_commission == D("34.90")
        assert split.instructor_earnings == D("159.00")

    def test_just_below_tier1_uses_base_rate(self) -> None:
        split = CommissionCalculator().calculate_split(D("199.99"))

        assert split.effective_percentage == D("20")
        assert split.gateway_fee == D("6.10")
        assert split.platform_commission == D("38.78")
        assert split.instructor_earnings == D("155.11")

    def test_tier2_discount(self) -> None:
        split = CommissionCalculator().calculate_split(D("500.00"))

        assert split.effective_percentage == D("15")
        assert split.gateway_fee == D("14.80")
        assert split.platform_commission == D("72.78")
        assert split.instructor_earnings == D("412.42")

    def test_minimum_commission_floor(self) -> None:
        split = CommissionCalculator().calculate_split(D("5.00"))

        # 0.30 + 0.145 rounds half-up
        assert split.gateway_fee == D("0.45")
        assert split.platform_commission == D("1.00")
        assert split.instructor_earnings == D("3.55")

    def test_commission_ceiling_wins_over_rate(self) -> None:
        config = CommissionConfig(instructor_overrides={"inst-greedy": 90})
        split = CommissionCalculator(config).calculate_split(D("100.00"), "inst-greedy")

        assert split.platform_commission == D("50.00")
        assert split.instructor_earnings == D("46.80")

    def test_tiny_payment_never_goes_negative(self) -> None:
        split = CommissionCalculator().calculate_split(D("0.50"))

        assert split.gateway_fee == D("0.31")
        assert split.platform_commission == D("0.19")
        assert split.instructor_earnings == D("0.00")

    def test_instructor_override_rate(self) -> None:
        config = CommissionConfig(instructor_overrides={"inst-vip": "10"})
        calculator = CommissionCalculator(config)

        assert calculator.calculate_split(D("100.00"), "inst-vip").platform_commission == D("9.68")
        assert calculator.calculate_split(D("100.00"), "inst-other").platform_commission == D(
            "19.36"
        )

    def test_override_still_gets_volume_discount(self) -> None:
        config = CommissionConfig(instructor_overrides={"inst-vip": "10"})
        split = CommissionCalculator(config).calculate_split(D("500.00"), "inst-vip")

        assert split.effective_percentage == D("5")
        assert split.platform_commission == D("24.26")
        assert split.instructor_earnings == D("460.94")

    def test_accepts_strings_and_ints(self) -> None:
        calculator = CommissionCalculator()

        assert calculator.calculate_split("100").instructor_earnings == D("77.44")
        assert calculator.calculate_split(100).instructor_earnings == D("77.44")

    def test_same_input_same_split(self) -> None:
        calculator = CommissionCalculator()

        assert calculator.calculate_split("87.65") == calculator.calculate_split("87.65")

    @pytest.mark.parametrize("amount", ["0", "-5.00", 0])
    def test_non_positive_amount_rejected(self, amount) -> None:
        with pytest.raises(InvalidAmountException) as exc_info:
            CommissionCalculator().calculate_split(amount)

        assert exc_info.value.code == "INVALID_AMOUNT"

    def test_non_numeric_amount_rejected(self) -> None:
        with pytest.raises(InvalidAmountException) as exc_info:
            CommissionCalculator().calculate_split("ten dollars")

        assert exc_info.value.message == "Amount is not a number"


class TestCommissionConfig:
    def test_from_settings(self) -> None:
        settings = Settings(platform_commission_percentage=25, gateway_fixed_fee=0)
        config = CommissionConfig.from_settings(settings, overrides={"inst-1": 12})

        assert config.base_percentage == D("25")
        assert config.gateway_fixed_fee == D("0")
        assert config.instructor_overrides == {"inst-1": D("12")}

    def test_tier_thresholds_must_be_ordered(self) -> None:
        with pytest.raises(ValueError):
            CommissionConfig(tier1_threshold="500", tier2_threshold="200")

    @pytest.mark.parametrize("ratio", ["0", "1.5"])
    def test_ratio_out_of_range(self, ratio: str) -> None:
        with pytest.raises(ValueError):
            CommissionConfig(maximum_commission_ratio=ratio)

    def test_effective_percentage_never_negative(self) -> None:
        config = CommissionConfig(instructor_overrides={"inst-free": "1"})
        calculator = CommissionCalculator(config)

        assert calculator.effective_percentage(D("600.00"), "inst-free") == D("0.00")
