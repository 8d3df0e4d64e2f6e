"""
Payout models.

A payout settles part of an instructor's unsettled earnings. The ledger
transactions it consumed point back at it through ``Transaction.payout_id``.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import Boolean, DateTime, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
import ulid

from app.core.enums import PayoutMethod, PayoutStatus
from app.database import Base
from app.models.types import JSONType, MoneyType, now_utc

if TYPE_CHECKING:
    from app.models.transaction import Transaction

_PENDING = text("status = 'PENDING'")


class Payout(Base):
    """Batch settlement request against an instructor's unsettled balance."""

    __tablename__ = "payouts"
    __table_args__ = (
        # At most one outstanding request per instructor
        Index(
            "uq_payouts_one_pending_per_instructor",
            "instructor_id",
            unique=True,
            postgresql_where=_PENDING,
            sqlite_where=_PENDING,
        ),
        Index("ix_payouts_instructor_requested", "instructor_id", "requested_at"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    payout_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    instructor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    processing_fee: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    payment_method: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PayoutMethod.BANK_TRANSFER.value
    )
    bank_details: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PayoutStatus.PENDING.value, index=True
    )
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    transfer_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[Dict[str, Any]] = mapped_column(
        "metadata", JSONType, nullable=False, default=dict
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=now_utc
    )

    transactions: Mapped[List["Transaction"]] = relationship(
        "Transaction", back_populates="payout", order_by="Transaction.created_at"
    )

    @property
    def status_enum(self) -> PayoutStatus:
        return PayoutStatus(self.status)

    def append_note(self, line: str) -> None:
        """Notes are an append-only audit trail."""
        self.notes = f"{self.notes}\n{line}" if self.notes else line

    def __repr__(self) -> str:
        return (
            f"<Payout(number={self.payout_number}, instructor={self.instructor_id}, "
            f"amount={self.amount}, status={self.status})>"
        )


class PayoutAccount(Base):
    """Instructor payout destination (Stripe Connect account, PayPal, bank)."""

    __tablename__ = "payout_accounts"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    instructor_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    provider: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PayoutMethod.STRIPE.value
    )
    external_account_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=now_utc
    )

    def __repr__(self) -> str:
        return (
            f"<PayoutAccount(instructor_id={self.instructor_id}, provider={self.provider}, "
            f"active={self.is_active})>"
        )
