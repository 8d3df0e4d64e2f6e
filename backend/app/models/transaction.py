"""
Ledger transaction model.

One row per monetary movement: a course payment, or a refund issued against a
payment. Rows are never deleted; refunds are new rows linked back to the
original payment.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, Optional

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
import ulid

from app.core.enums import TransactionKind, TransactionStatus
from app.database import Base
from app.models.types import JSONType, MoneyType, now_utc

if TYPE_CHECKING:
    from app.models.payout import Payout

_COMPLETED_PAYMENT = text("kind = 'PAYMENT' AND status = 'COMPLETED'")


class Transaction(Base):
    """A payment or refund recorded in the ledger."""

    __tablename__ = "transactions"
    __table_args__ = (
        # One billed enrollment per payer and course
        Index(
            "uq_transactions_completed_enrollment",
            "payer_id",
            "course_id",
            unique=True,
            postgresql_where=_COMPLETED_PAYMENT,
            sqlite_where=_COMPLETED_PAYMENT,
        ),
        Index("ix_transactions_instructor_unsettled", "instructor_id", "payout_id", "created_at"),
        Index("ix_transactions_payer_created", "payer_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    external_charge_ref: Mapped[Optional[str]] = mapped_column(
        String(255), unique=True, nullable=True, comment="Gateway charge or refund id"
    )
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransactionStatus.COMPLETED.value, index=True
    )
    kind: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransactionKind.PAYMENT.value
    )
    platform_commission: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=0)
    instructor_earnings: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=0)

    payer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    course_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    instructor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[Dict[str, Any]] = mapped_column(
        "metadata", JSONType, nullable=False, default=dict
    )

    refund_of_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("transactions.id"), nullable=True, index=True
    )
    refund_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    payout_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("payouts.id"), nullable=True, index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=now_utc
    )

    payout: Mapped[Optional["Payout"]] = relationship("Payout", back_populates="transactions")

    @property
    def is_payment(self) -> bool:
        return self.kind == TransactionKind.PAYMENT.value

    @property
    def is_settled(self) -> bool:
        return self.payout_id is not None

    def __repr__(self) -> str:
        return (
            f"<Transaction(id={self.id}, kind={self.kind}, status={self.status}, "
            f"amount={self.amount}, earnings={self.instructor_earnings})>"
        )
