from __future__ import annotations

import pytest

from app.core.enums import PayoutMethod
from app.core.exceptions import NotFoundException, ValidationException
from app.models.payout import PayoutAccount
from app.services.audit_service import AuditAction, AuditService
from app.services.payout_account_service import PayoutAccountService


@pytest.fixture
def audit_records() -> list:
    return []


@pytest.fixture
def service(db, audit_records) -> PayoutAccountService:
    return PayoutAccountService(db, audit=AuditService([audit_records.append]))


class TestRegisterAccount:
    def test_registers_stripe_account(
        self, service: PayoutAccountService, db, audit_records
    ) -> None:
        account = service.register_account(instructor_id="inst-1", external_account_ref="acct_9")

        assert account.provider == PayoutMethod.STRIPE.value
        assert account.external_account_ref == "acct_9"
        assert account.is_active is True
        assert db.query(PayoutAccount).count() == 1
        assert audit_records[-1].action == AuditAction.PAYOUT_ACCOUNT_REGISTERED

    def test_email_is_redacted_in_audit(self, service: PayoutAccountService, audit_records):
        service.register_account(
            instructor_id="inst-1", provider="paypal", email="inst1@example.com"
        )

        assert audit_records[-1].metadata["email"] == "[REDACTED]"

    def test_registering_again_replaces_destination(
        self, service: PayoutAccountService, db
    ) -> None:
        first = service.register_account(instructor_id="inst-1", external_account_ref="acct_1")
        service.deactivate_account("inst-1")

        second = service.register_account(
            instructor_id="inst-1", provider=PayoutMethod.PAYPAL, email="pay@example.com"
        )

        assert second.id == first.id
        assert second.provider == PayoutMethod.PAYPAL.value
        assert second.external_account_ref is None
        assert second.email == "pay@example.com"
        assert second.is_active is True
        assert db.query(PayoutAccount).count() == 1

    def test_stripe_requires_connected_account(self, service: PayoutAccountService) -> None:
        with pytest.raises(ValidationException) as exc_info:
            service.register_account(instructor_id="inst-1", provider="stripe")

        assert exc_info.value.code == "MISSING_EXTERNAL_ACCOUNT"

    def test_unknown_provider(self, service: PayoutAccountService) -> None:
        with pytest.raises(ValidationException) as exc_info:
            service.register_account(instructor_id="inst-1", provider="cheque-by-post")

        assert exc_info.value.code == "INVALID_PAYMENT_METHOD"
        assert exc_info.value.details == {"provider": "cheque-by-post"}


class TestDeactivateAccount:
    def test_deactivate(self, service: PayoutAccountService, make_account, audit_records) -> None:
        make_account("inst-1")

        account = service.deactivate_account("inst-1", actor_id="admin-1")

        assert account.is_active is False
        assert service.get_active_account("inst-1") is None
        assert audit_records[-1].action == AuditAction.PAYOUT_ACCOUNT_DEACTIVATED
        assert audit_records[-1].actor_id == "admin-1"

    def test_missing_account(self, service: PayoutAccountService) -> None:
        with pytest.raises(NotFoundException) as exc_info:
            service.deactivate_account("nobody")

        assert exc_info.value.code == "PAYOUT_ACCOUNT_NOT_FOUND"


class TestGetActiveAccount:
    def test_returns_active_account(self, service: PayoutAccountService, make_account) -> None:
        created = make_account("inst-1")

        assert service.get_active_account("inst-1").id == created.id

    def test_none_without_account(self, service: PayoutAccountService) -> None:
        assert service.get_active_account("inst-1") is None
