# backend/tests/conftest.py
"""
Pytest configuration for the payments ledger.

Every test gets a fresh in-memory SQLite database with the full schema. The
pysqlite driver is switched to manual transaction control so the SAVEPOINTs
used by ``BaseRepository.create`` behave as they do on PostgreSQL.
"""

import os

# Keep real gateway credentials out of the test run
os.environ.pop("stripe_secret_key", None)
os.environ.pop("STRIPE_SECRET_KEY", None)

from datetime import datetime, timedelta, timezone
from decimal import Decimal
import itertools
from typing import Any, Callable, Optional

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401  (registers tables on Base.metadata)
from app.core.enums import PayoutMethod, PayoutStatus, TransactionKind, TransactionStatus
from app.database import Base
from app.models.payout import Payout, PayoutAccount
from app.models.transaction import Transaction
from app.services.base import BaseService

BASE_TIME = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(test_engine, "connect")
    def _manual_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(test_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(test_engine)
    yield test_engine
    Base.metadata.drop_all(test_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture(autouse=True)
def _reset_service_metrics():
    BaseService._operation_stats.clear()
    yield
    BaseService._operation_stats.clear()


@pytest.fixture
def make_account(db) -> Callable[..., PayoutAccount]:
    def _make(
        instructor_id: str = "inst-1",
        provider: PayoutMethod = PayoutMethod.STRIPE,
        external_account_ref: Optional[str] = "acct_123",
        is_active: bool = True,
        email: Optional[str] = None,
    ) -> PayoutAccount:
        account = PayoutAccount(
            instructor_id=instructor_id,
            provider=provider.value,
            external_account_ref=external_account_ref,
            email=email,
            is_active=is_active,
        )
        db.add(account)
        db.commit()
        return account

    return _make


@pytest.fixture
def make_transaction(db) -> Callable[..., Transaction]:
    """Insert a ledger row directly, bypassing the commission calculator."""
    counter = itertools.count(1)

    def _make(
        instructor_id: str = "inst-1",
        earnings: Any = "50.00",
        *,
        amount: Any = None,
        commission: Any = "10.00",
        kind: TransactionKind = TransactionKind.PAYMENT,
        status: TransactionStatus = TransactionStatus.COMPLETED,
        payer_id: Optional[str] = None,
        course_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
        external_charge_ref: Optional[str] = None,
        payout_id: Optional[str] = None,
        refund_of_id: Optional[str] = None,
    ) -> Transaction:
        n = next(counter)
        earnings_value = Decimal(str(earnings))
        txn = Transaction(
            amount=Decimal(str(amount)) if amount is not None else abs(earnings_value),
            currency="USD",
            kind=kind.value,
            status=status.value,
            platform_commission=Decimal(str(commission)),
            instructor_earnings=earnings_value,
            payer_id=payer_id or f"payer-{n}",
            course_id=course_id or f"course-{n}",
            instructor_id=instructor_id,
            created_at=created_at or BASE_TIME + timedelta(minutes=n),
            external_charge_ref=external_charge_ref,
            payout_id=payout_id,
            refund_of_id=refund_of_id,
            metadata_json={},
        )
        db.add(txn)
        db.commit()
        return txn

    return _make


@pytest.fixture
def make_payout(db) -> Callable[..., Payout]:
    counter = itertools.count(1)

    def _make(
        instructor_id: str = "inst-1",
        amount: Any = "50.00",
        *,
        status: PayoutStatus = PayoutStatus.PENDING,
        payout_number: Optional[str] = None,
        payment_method: PayoutMethod = PayoutMethod.BANK_TRANSFER,
        processing_fee: Any = "0.00",
        requested_at: Optional[datetime] = None,
    ) -> Payout:
        n = next(counter)
        when = requested_at or BASE_TIME + timedelta(days=n)
        payout = Payout(
            payout_number=payout_number or f"PAYOUT-2000-{n:06d}",
            instructor_id=instructor_id,
            amount=Decimal(str(amount)),
            processing_fee=Decimal(str(processing_fee)),
            currency="USD",
            payment_method=payment_method.value,
            status=status.value,
            period_start=when,
            period_end=when,
            requested_at=when,
            metadata_json={},
        )
        db.add(payout)
        db.commit()
        return payout

    return _make
