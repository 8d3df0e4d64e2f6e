# backend/app/services/payout_fees.py
"""
Processing fee charged on a payout, per payout method.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from app.core.enums import PayoutMethod
from app.utils.money import ZERO, round_money, to_decimal


@dataclass(frozen=True)
class FeeRule:
    """``max(amount * percentage / 100 + fixed, minimum)``, or zero at/above the waiver."""

    percentage: Decimal = ZERO
    fixed: Decimal = ZERO
    minimum: Decimal = ZERO
    waive_at_or_above: Optional[Decimal] = None

    def fee_for(self, amount: Any) -> Decimal:
        value = to_decimal(amount)
        if self.waive_at_or_above is not None and value >= self.waive_at_or_above:
            return ZERO
        fee = value * self.percentage / Decimal("100") + self.fixed
        return round_money(max(fee, self.minimum))


DEFAULT_FEE_RULES: Dict[PayoutMethod, FeeRule] = {
    PayoutMethod.PAYPAL: FeeRule(
        percentage=Decimal("2.9"), fixed=Decimal("0.30"), minimum=Decimal("1.00")
    ),
    PayoutMethod.STRIPE: FeeRule(percentage=Decimal("2.5"), minimum=Decimal("1.00")),
    PayoutMethod.BANK_TRANSFER: FeeRule(
        fixed=Decimal("2.50"), waive_at_or_above=Decimal("1000.00")
    ),
    PayoutMethod.EXPRESS: FeeRule(percentage=Decimal("3.5"), minimum=Decimal("5.00")),
    PayoutMethod.OTHER: FeeRule(percentage=Decimal("2"), minimum=Decimal("1.00")),
}


@dataclass(frozen=True)
class PayoutFeeSchedule:
    rules: Mapping[PayoutMethod, FeeRule] = field(default_factory=lambda: dict(DEFAULT_FEE_RULES))

    def fee_for(self, method: PayoutMethod, amount: Any) -> Decimal:
        rule = self.rules.get(method) or self.rules.get(PayoutMethod.OTHER)
        if rule is None:
            return ZERO
        return rule.fee_for(amount)
