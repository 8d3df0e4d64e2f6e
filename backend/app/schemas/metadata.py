"""
Typed, versioned views over the JSON ``metadata`` columns.

Only the keys the ledger itself reads are declared; anything else a caller
attaches is kept as passthrough (``extra="allow"``). Bump ``schema_version``
when a declared key changes meaning.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

CURRENT_METADATA_VERSION = 1


class _VersionedMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    schema_version: int = Field(default=CURRENT_METADATA_VERSION)

    @classmethod
    def load(cls, raw: Optional[Dict[str, Any]]):
        return cls.model_validate(raw or {})

    def dump(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    def merged(self, **updates: Any):
        """Return a copy with ``updates`` applied (None values are skipped)."""
        data = self.model_dump()
        data.update({k: v for k, v in updates.items() if v is not None})
        return self.__class__.model_validate(data)


class TransactionMetadata(_VersionedMetadata):
    """Metadata stored on ledger transactions."""

    payment_method: Optional[str] = None
    card_last4: Optional[str] = None
    gateway_status: Optional[str] = None
    original_transaction_id: Optional[str] = None
    refund_reason: Optional[str] = None
    refunded_by: Optional[str] = None
    refund_ratio: Optional[str] = None
    dispute_id: Optional[str] = None
    dispute_reason: Optional[str] = None
    error: Optional[str] = None


class PayoutMetadata(_VersionedMetadata):
    """Metadata stored on payouts."""

    requested_by: Optional[str] = None
    processed_by: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    transfer_ref: Optional[str] = None
    transfer_status: Optional[str] = None
    processing_time_ms: Optional[int] = None
    allocated_transaction_ids: Optional[List[str]] = None
    allocated_earnings: Optional[str] = None
    error: Optional[str] = None
