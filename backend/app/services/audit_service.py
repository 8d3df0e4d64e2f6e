"""Audit trail for ledger and settlement operations."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
import json
import logging
from typing import Any, Callable, Iterable, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

audit_logger = logging.getLogger("app.audit")
logger = logging.getLogger(__name__)

Status = Literal["success", "failed", "denied"]

REDACTED_VALUE = "[REDACTED]"

_EXACT_KEYS = {
    "email",
    "bank_details",
    "account_number",
    "routing_number",
    "iban",
    "payment_method_token",
}

_PREFIX_KEYS = ("card_", "bank_account")

_SUFFIX_KEYS = ("_token", "_secret", "_api_key")


class AuditAction(str, Enum):
    PAYMENT_RECORDED = "PAYMENT_RECORDED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    REFUND_PROCESSED = "REFUND_PROCESSED"
    PAYMENT_DISPUTED = "PAYMENT_DISPUTED"
    PAYOUT_REQUESTED = "PAYOUT_REQUESTED"
    PAYOUT_PROCESSING = "PAYOUT_PROCESSING"
    PAYOUT_COMPLETED = "PAYOUT_COMPLETED"
    PAYOUT_FAILED = "PAYOUT_FAILED"
    PAYOUT_CANCELLED = "PAYOUT_CANCELLED"
    PAYOUT_ACCOUNT_REGISTERED = "PAYOUT_ACCOUNT_REGISTERED"
    PAYOUT_ACCOUNT_DEACTIVATED = "PAYOUT_ACCOUNT_DEACTIVATED"


class AuditRecord(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    action: AuditAction
    actor_id: Optional[str] = None
    resource_type: str
    resource_id: Optional[str] = None
    description: Optional[str] = None
    status: Status = "success"
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


AuditSink = Callable[[AuditRecord], None]


class AuditService:
    """
    Builds audit records and fans them out.

    Every record is written as one JSON line to the ``app.audit`` logger, then
    handed to each registered sink (a database writer, a SIEM forwarder). Sink
    failures are logged and never reach the caller.
    """

    def __init__(self, sinks: Optional[Iterable[AuditSink]] = None):
        self.sinks: list[AuditSink] = list(sinks or [])

    def add_sink(self, sink: AuditSink) -> None:
        self.sinks.append(sink)

    def log(
        self,
        action: AuditAction,
        *,
        actor_id: Optional[str] = None,
        resource_type: str = "transaction",
        resource_id: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        status: Status = "success",
        timestamp: Optional[datetime] = None,
    ) -> AuditRecord:
        """Create an audit record."""
        record = AuditRecord(
            action=action,
            actor_id=actor_id,
            resource_type=resource_type,
            resource_id=resource_id,
            description=description,
            status=status,
            metadata=_sanitize_metadata(metadata),
            timestamp=timestamp or datetime.now(timezone.utc),
        )
        audit_logger.info(json.dumps(record.model_dump(mode="json"), sort_keys=True))
        for sink in list(self.sinks):
            try:
                sink(record)
            except Exception:
                logger.exception("Audit sink %s failed for %s", sink, record.action.value)
        return record


def _sanitize_metadata(metadata: Optional[Mapping[str, Any]]) -> dict[str, Any]:
    if not metadata:
        return {}
    sanitized: dict[str, Any] = {}
    for key, value in metadata.items():
        lowered = key.lower()
        if (
            lowered in _EXACT_KEYS
            or any(lowered.startswith(prefix) for prefix in _PREFIX_KEYS)
            or any(lowered.endswith(suffix) for suffix in _SUFFIX_KEYS)
        ):
            sanitized[key] = REDACTED_VALUE
            continue
        sanitized[key] = _normalize_value(value)
    return sanitized


def _normalize_value(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _normalize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize_value(v) for v in value]
    return value
