"""Event primitives for payment notifications."""

from .payment_events import (
    NotificationType,
    PaymentNotification,
    PaymentNotificationListener,
    PaymentNotifier,
)

__all__ = [
    "NotificationType",
    "PaymentNotification",
    "PaymentNotificationListener",
    "PaymentNotifier",
]
