# backend/app/services/commission_calculator.py
"""
Commission calculator.

Splits a gross course payment into the gateway fee, the platform commission
and the instructor's earnings. Pure computation: no I/O, no clock, so the same
input and configuration always give the same split.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
import logging
from typing import TYPE_CHECKING, Any, Mapping, Optional

from app.core.exceptions import InvalidAmountException
from app.schemas.ledger import CommissionSplit
from app.utils.money import ZERO, round_money, to_decimal

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class CommissionConfig:
    """Revenue split parameters. Percentages are expressed as 20 for 20%."""

    base_percentage: Decimal = Decimal("20")
    tier1_threshold: Decimal = Decimal("200.00")
    tier1_discount: Decimal = Decimal("2")
    tier2_threshold: Decimal = Decimal("500.00")
    tier2_discount: Decimal = Decimal("5")
    gateway_fixed_fee: Decimal = Decimal("0.30")
    gateway_percentage_fee: Decimal = Decimal("2.9")
    minimum_commission: Decimal = Decimal("1.00")
    maximum_commission_ratio: Decimal = Decimal("0.5")
    instructor_overrides: Mapping[str, Decimal] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Accept ints, floats and strings from configuration sources
        for name in (
            "base_percentage",
            "tier1_threshold",
            "tier1_discount",
            "tier2_threshold",
            "tier2_discount",
            "gateway_fixed_fee",
            "gateway_percentage_fee",
            "minimum_commission",
            "maximum_commission_ratio",
        ):
            object.__setattr__(self, name, to_decimal(getattr(self, name)))
        object.__setattr__(
            self,
            "instructor_overrides",
            {key: to_decimal(value) for key, value in dict(self.instructor_overrides).items()},
        )
        if self.tier2_threshold < self.tier1_threshold:
            raise ValueError("tier2_threshold must not be below tier1_threshold")
        if not ZERO < self.maximum_commission_ratio <= 1:
            raise ValueError("maximum_commission_ratio must be within (0, 1]")

    @classmethod
    def from_settings(
        cls, settings: "Settings", overrides: Optional[Mapping[str, Any]] = None
    ) -> "CommissionConfig":
        return cls(
            base_percentage=settings.platform_commission_percentage,
            tier1_threshold=settings.commission_tier1_threshold,
            tier1_discount=settings.commission_tier1_discount,
            tier2_threshold=settings.commission_tier2_threshold,
            tier2_discount=settings.commission_tier2_discount,
            gateway_fixed_fee=settings.gateway_fixed_fee,
            gateway_percentage_fee=settings.gateway_percentage_fee,
            minimum_commission=settings.minimum_commission,
            maximum_commission_ratio=settings.maximum_commission_ratio,
            instructor_overrides=dict(overrides or {}),
        )


class CommissionCalculator:
    """Computes the revenue split for a single payment."""

    def __init__(self, config: Optional[CommissionConfig] = None):
        self.config = config or CommissionConfig()

    def effective_percentage(self, gross_amount: Decimal, instructor_id: Optional[str] = None):
        """Base (or per-instructor) rate less the volume discount for this amount."""
        config = self.config
        base = config.base_percentage
        if instructor_id is not None and instructor_id in config.instructor_overrides:
            base = config.instructor_overrides[instructor_id]

        if gross_amount >= config.tier2_threshold:
            base -= config.tier2_discount
        elif gross_amount >= config.tier1_threshold:
            base -= config.tier1_discount
        return max(base, ZERO)

    def calculate_split(
        self, gross_amount: Any, instructor_id: Optional[str] = None
    ) -> CommissionSplit:
        """
        Split ``gross_amount`` into gateway fee, platform commission and earnings.

        Raises:
            InvalidAmountException: If ``gross_amount`` is not positive
        """
        try:
            gross = round_money(gross_amount)
        except ValueError:
            raise InvalidAmountException(gross_amount, reason="Amount is not a number")
        if gross <= ZERO:
            raise InvalidAmountException(gross_amount)

        config = self.config
        percentage = self.effective_percentage(gross, instructor_id)

        gateway_fee = round_money(
            config.gateway_fixed_fee + gross * config.gateway_percentage_fee / HUNDRED
        )
        net = gross - gateway_fee

        commission = round_money(net * percentage / HUNDRED)
        ceiling = round_money(gross * config.maximum_commission_ratio)
        commission = min(max(commission, config.minimum_commission), ceiling)
        # Never take more than what is left after the gateway fee
        commission = round_money(min(commission, max(net, ZERO)))

        earnings = max(round_money(net - commission), ZERO)

        return CommissionSplit(
            gross_amount=gross,
            gateway_fee=gateway_fee,
            net_amount=net,
            effective_percentage=percentage,
            platform_commission=commission,
            instructor_earnings=earnings,
        )
