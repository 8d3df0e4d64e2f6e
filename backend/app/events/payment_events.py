"""Typed payment notifications and their dispatcher."""

from __future__ import annotations

from enum import Enum
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger("app.events.payments")


class NotificationType(str, Enum):
    PAYMENT_COMPLETED = "PAYMENT_COMPLETED"
    REFUND_COMPLETED = "REFUND_COMPLETED"
    PAYOUT_COMPLETED = "PAYOUT_COMPLETED"
    PAYOUT_FAILED = "PAYOUT_FAILED"
    NEW_EARNINGS = "NEW_EARNINGS"


class PaymentNotification(BaseModel):
    """A user-facing notification produced by a ledger or settlement operation."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: NotificationType
    recipient_id: str
    payload: Dict[str, Any] = Field(default_factory=dict)


PaymentNotificationListener = Callable[[PaymentNotification], None]


class PaymentNotifier:
    """
    In-process registry of notification listeners.

    Delivery is best-effort: a failing listener is logged and skipped, it never
    fails the operation that produced the notification.
    """

    def __init__(self, listeners: Optional[Iterable[PaymentNotificationListener]] = None):
        self._listeners: List[PaymentNotificationListener] = list(listeners or [])

    def register(self, listener: PaymentNotificationListener) -> None:
        self._listeners.append(listener)

    def unregister(self, listener: PaymentNotificationListener) -> None:
        self._listeners = [existing for existing in self._listeners if existing != listener]

    def listeners(self) -> Sequence[PaymentNotificationListener]:
        return tuple(self._listeners)

    def dispatch(self, notification: PaymentNotification) -> None:
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception:
                logger.exception("Payment notification listener error: %s", listener)
        logger.info(
            "payment_notification=%s recipient=%s",
            notification.type.value,
            notification.recipient_id,
        )

    def notify(
        self, type: NotificationType, recipient_id: str, **payload: Any
    ) -> PaymentNotification:
        notification = PaymentNotification(
            type=type,
            recipient_id=recipient_id,
            payload={key: _jsonable(value) for key, value in payload.items()},
        )
        self.dispatch(notification)
        return notification


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


__all__ = [
    "NotificationType",
    "PaymentNotification",
    "PaymentNotificationListener",
    "PaymentNotifier",
]
