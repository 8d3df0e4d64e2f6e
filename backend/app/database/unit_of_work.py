"""
Atomic unit of work.

A unit groups several writes that must be applied together or not at all
(refund + original update, transaction tagging + payout status). The unit
commits when ``work`` returns and rolls back on any exception, then reports
what happened as an ``AtomicResult`` so callers can tell a business-rule
failure from an infrastructure failure.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Callable, Generic, Literal, Optional, TypeVar

from sqlalchemy.orm import Session

from app.core.exceptions import DomainException

T = TypeVar("T")

FailureKind = Literal["business", "infrastructure"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AtomicResult(Generic[T]):
    """Outcome of one atomic unit."""

    ok: bool
    value: Optional[T] = None
    error: Optional[BaseException] = None
    failure_kind: Optional[FailureKind] = None

    @property
    def is_business_failure(self) -> bool:
        return self.failure_kind == "business"

    @property
    def is_infrastructure_failure(self) -> bool:
        return self.failure_kind == "infrastructure"

    def unwrap(self) -> T:
        """Return the value, or re-raise the error that aborted the unit."""
        if self.ok:
            return self.value  # type: ignore[return-value]
        assert self.error is not None
        raise self.error


def _classify(exc: BaseException) -> FailureKind:
    if isinstance(exc, DomainException):
        return "business"
    # SQLAlchemyError, RepositoryException and anything unexpected
    return "infrastructure"


def run_atomic(session: Session, work: Callable[[], T], *, name: str = "unit") -> AtomicResult[T]:
    """Apply every write made by ``work`` or none of them."""
    try:
        value = work()
        session.commit()
    except Exception as exc:
        session.rollback()
        kind = _classify(exc)
        if kind == "infrastructure":
            logger.error("Atomic unit %s rolled back: %s", name, exc, exc_info=True)
        else:
            logger.info("Atomic unit %s rejected: %s", name, exc)
        return AtomicResult(ok=False, error=exc, failure_kind=kind)
    return AtomicResult(ok=True, value=value)
