from __future__ import annotations

from decimal import Decimal
import logging

from app.events.payment_events import NotificationType, PaymentNotification, PaymentNotifier


class TestPaymentNotifier:
    def test_notify_delivers_to_every_listener(self) -> None:
        received: list[PaymentNotification] = []
        notifier = PaymentNotifier([received.append])
        notifier.register(received.append)

        notification = notifier.notify(
            NotificationType.NEW_EARNINGS, "inst-1", transaction_id="t1", earnings=Decimal("7.50")
        )

        assert received == [notification, notification]
        assert notification.payload == {"transaction_id": "t1", "earnings": "7.50"}

    def test_failing_listener_does_not_stop_delivery(self, caplog) -> None:
        received: list[PaymentNotification] = []

        def broken(_notification: PaymentNotification) -> None:
            raise RuntimeError("smtp down")

        notifier = PaymentNotifier([broken, received.append])

        with caplog.at_level(logging.ERROR, logger="app.events.payments"):
            notifier.notify(NotificationType.PAYOUT_FAILED, "inst-1", reason="declined")

        assert len(received) == 1
        assert "listener error" in caplog.text

    def test_unregister(self) -> None:
        received: list[PaymentNotification] = []
        notifier = PaymentNotifier([received.append])

        notifier.unregister(received.append)
        notifier.notify(NotificationType.PAYMENT_COMPLETED, "payer-1")

        assert received == []
        assert notifier.listeners() == ()
