# backend/app/services/payout_account_service.py
"""Instructor payout destinations (connected Stripe account, PayPal, bank)."""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.core.enums import PayoutMethod
from app.core.exceptions import NotFoundException, ValidationException
from app.models.payout import PayoutAccount
from app.repositories.factory import RepositoryFactory
from app.services.audit_service import AuditAction, AuditService
from app.services.base import BaseService

logger = logging.getLogger(__name__)


class PayoutAccountService(BaseService):
    """Keeps at most one payout destination per instructor."""

    def __init__(self, db: Session, audit: Optional[AuditService] = None):
        super().__init__(db)
        self.audit = audit or AuditService()
        self.account_repository = RepositoryFactory.create_payout_account_repository(db)

    @BaseService.measure_operation("register_account")
    def register_account(
        self,
        *,
        instructor_id: str,
        provider: Any = PayoutMethod.STRIPE,
        external_account_ref: Optional[str] = None,
        email: Optional[str] = None,
    ) -> PayoutAccount:
        """Create or replace the instructor's payout destination and mark it active."""
        try:
            method = PayoutMethod(provider)
        except ValueError:
            raise ValidationException(
                f"Unsupported payout provider: {provider}",
                code="INVALID_PAYMENT_METHOD",
                details={"provider": str(provider)},
            )
        if method == PayoutMethod.STRIPE and not external_account_ref:
            raise ValidationException(
                "A connected account id is required for Stripe payouts",
                code="MISSING_EXTERNAL_ACCOUNT",
                details={"instructor_id": instructor_id},
            )

        with self.transaction():
            account = self.account_repository.get_by_instructor(instructor_id)
            if account is None:
                account = self.account_repository.create(
                    instructor_id=instructor_id,
                    provider=method.value,
                    external_account_ref=external_account_ref,
                    email=email,
                    is_active=True,
                )
            else:
                account.provider = method.value
                account.external_account_ref = external_account_ref
                account.email = email
                account.is_active = True
                self.account_repository.flush()

        self.run_side_effect(
            "audit.payout_account_registered",
            self.audit.log,
            AuditAction.PAYOUT_ACCOUNT_REGISTERED,
            actor_id=instructor_id,
            resource_type="payout_account",
            resource_id=account.id,
            description=f"Payout destination set to {method.value}",
            metadata={"external_account_ref": external_account_ref, "email": email},
        )
        return account

    @BaseService.measure_operation("deactivate_account")
    def deactivate_account(
        self, instructor_id: str, actor_id: Optional[str] = None
    ) -> PayoutAccount:
        """Stop accepting new payments for the instructor. Existing earnings stay payable."""
        with self.transaction():
            account = self.account_repository.get_by_instructor(instructor_id)
            if account is None:
                raise NotFoundException(
                    "Payout account not found",
                    code="PAYOUT_ACCOUNT_NOT_FOUND",
                    details={"instructor_id": instructor_id},
                )
            account.is_active = False
            self.account_repository.flush()

        self.run_side_effect(
            "audit.payout_account_deactivated",
            self.audit.log,
            AuditAction.PAYOUT_ACCOUNT_DEACTIVATED,
            actor_id=actor_id or instructor_id,
            resource_type="payout_account",
            resource_id=account.id,
            description="Payout destination deactivated",
        )
        return account

    @BaseService.measure_operation("get_active_account")
    def get_active_account(self, instructor_id: str) -> Optional[PayoutAccount]:
        return self.account_repository.get_active_for_instructor(instructor_id)
