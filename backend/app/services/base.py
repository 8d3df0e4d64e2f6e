# backend/app/services/base.py
"""
Shared service plumbing for the payments ledger.

Every ledger service gets a session, a class-named logger, a commit/rollback
context, an operation timer that feeds Prometheus, and a helper for the
best-effort side effects (notifications, audit) that must never fail a money
movement.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from functools import wraps
import logging
import time
from typing import Any, Callable, Dict, Optional, TypeVar, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import ServiceException
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

SLOW_OPERATION_SECONDS = 1.0


@dataclass
class OperationStats:
    """In-process timings for one service operation."""

    count: int = 0
    failures: int = 0
    total_seconds: float = 0.0
    fastest: float = float("inf")
    slowest: float = 0.0

    def add(self, elapsed: float, ok: bool) -> None:
        self.count += 1
        self.total_seconds += elapsed
        self.fastest = min(self.fastest, elapsed)
        self.slowest = max(self.slowest, elapsed)
        if not ok:
            self.failures += 1

    def summary(self) -> Dict[str, Any]:
        successes = self.count - self.failures
        return {
            "count": self.count,
            "avg_time": self.total_seconds / self.count,
            "min_time": self.fastest,
            "max_time": self.slowest,
            "success_rate": successes / self.count,
            "success_count": successes,
            "failure_count": self.failures,
        }


class BaseService:
    """Base class for ledger, payout and earnings services."""

    # service class name -> operation name -> stats
    _operation_stats: Dict[str, Dict[str, OperationStats]] = {}

    def __init__(self, db: Session):
        self.db = db
        self.logger = logging.getLogger(self.__class__.__name__)

    @contextmanager
    def transaction(self):
        """
        Commit the session when the block exits cleanly, roll back otherwise.

        Database errors surface as ``ServiceException``; anything else (domain
        errors, ``IntegrityConflict``) is re-raised unchanged after the rollback.
        """
        try:
            yield self.db
            self.db.commit()
        except SQLAlchemyError as exc:
            self.logger.error(f"Ledger write failed, rolling back: {exc}")
            self.db.rollback()
            raise ServiceException(f"Database operation failed: {exc}")
        except Exception as exc:
            self.logger.debug(f"Rolling back after {type(exc).__name__}: {exc}")
            self.db.rollback()
            raise

    @staticmethod
    def measure_operation(operation_name: str) -> Callable[[F], F]:
        """
        Time a service method and export the result.

        Usage:
            @BaseService.measure_operation("process_payout")
            def process_payout(self, payout_id):
                ...
        """

        def decorator(func: F) -> F:
            @wraps(func)
            def wrapper(self, *args, **kwargs):
                started = time.monotonic()
                error_type: Optional[str] = None
                try:
                    return func(self, *args, **kwargs)
                except Exception as exc:
                    error_type = type(exc).__name__
                    raise
                finally:
                    self._observe(operation_name, time.monotonic() - started, error_type)

            wrapper._operation_name = operation_name  # type: ignore[attr-defined]
            return cast(F, wrapper)

        return decorator

    def _observe(self, operation: str, elapsed: float, error_type: Optional[str]) -> None:
        service = self.__class__.__name__
        stats = BaseService._operation_stats.setdefault(service, {})
        stats.setdefault(operation, OperationStats()).add(elapsed, error_type is None)

        if elapsed > SLOW_OPERATION_SECONDS:
            self.logger.warning(f"Slow operation: {operation} took {elapsed:.2f}s")

        try:
            prometheus_metrics.record_service_operation(
                service=service,
                operation=operation,
                duration=elapsed,
                status="error" if error_type else "success",
                error_type=error_type,
            )
        except Exception:
            logger.debug("Could not export metrics for %s.%s", service, operation)

    def run_side_effect(
        self, label: str, func: Callable[..., Any], *args: Any, **kwargs: Any
    ) -> None:
        """Run a notification or audit call. Failures are logged and dropped."""
        try:
            func(*args, **kwargs)
        except Exception:
            self.logger.exception(f"Side effect {label} failed")

    def get_metrics(self) -> Dict[str, Any]:
        """Timing summary per measured operation of this service class."""
        stats = BaseService._operation_stats.get(self.__class__.__name__, {})
        return {name: s.summary() for name, s in stats.items() if s.count}

    def reset_metrics(self) -> None:
        BaseService._operation_stats.pop(self.__class__.__name__, None)
