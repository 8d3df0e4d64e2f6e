from __future__ import annotations

from decimal import Decimal
from unittest.mock import Mock

import pytest

from app.core.enums import PayoutMethod
from app.core.exceptions import GatewayFailureException, ValidationException
from app.integrations.payment_gateway import TransferResult
from app.integrations.payout_transfers import (
    ManualTransferProvider,
    StripeConnectTransferProvider,
    TransferRouter,
    transfer_amount,
)
from app.models.payout import Payout, PayoutAccount


def _payout(method: PayoutMethod = PayoutMethod.STRIPE) -> Payout:
    return Payout(
        id="p1",
        payout_number="PAYOUT-2024-000001",
        instructor_id="inst-1",
        amount=Decimal("100.00"),
        processing_fee=Decimal("2.50"),
        currency="USD",
        payment_method=method.value,
    )


class TestTransferProviders:
    def test_transfer_amount_is_net_of_fee(self) -> None:
        assert transfer_amount(_payout()) == Decimal("97.50")

    def test_connect_transfer(self) -> None:
        gateway = Mock()
        gateway.transfer.return_value = TransferResult("tr_1", "paid", Decimal("97.50"), "acct_1")
        account = PayoutAccount(instructor_id="inst-1", external_account_ref="acct_1")

        result = StripeConnectTransferProvider(gateway).send(_payout(), account)

        assert result.transfer_ref == "tr_1"
        args, kwargs = gateway.transfer.call_args
        assert args == ("acct_1", Decimal("97.50"), "USD")
        assert kwargs["idempotency_key"] == "payout:p1"

    def test_connect_transfer_without_account_fails(self) -> None:
        gateway = Mock()

        with pytest.raises(GatewayFailureException):
            StripeConnectTransferProvider(gateway).send(_payout(), None)
        gateway.transfer.assert_not_called()

    def test_manual_settlement_is_recorded(self) -> None:
        account = PayoutAccount(instructor_id="inst-1", email="inst@example.com")

        result = ManualTransferProvider().send(_payout(PayoutMethod.PAYPAL), account)

        assert result.transfer_ref == "manual:paypal:PAYOUT-2024-000001"
        assert result.status == "recorded"
        assert result.destination == "inst@example.com"


class TestTransferRouter:
    def test_stripe_goes_through_connect_when_gateway_present(self) -> None:
        router = TransferRouter.with_gateway(Mock())

        assert isinstance(router.provider_for(PayoutMethod.STRIPE), StripeConnectTransferProvider)
        assert isinstance(router.provider_for(PayoutMethod.PAYPAL), ManualTransferProvider)

    def test_without_gateway_everything_is_manual(self) -> None:
        router = TransferRouter.with_gateway(None)

        assert isinstance(router.provider_for(PayoutMethod.STRIPE), ManualTransferProvider)

    def test_unrouted_method_rejected(self) -> None:
        router = TransferRouter({PayoutMethod.STRIPE: ManualTransferProvider()})

        with pytest.raises(ValidationException) as exc_info:
            router.provider_for(PayoutMethod.EXPRESS)

        assert exc_info.value.code == "UNSUPPORTED_PAYOUT_METHOD"
