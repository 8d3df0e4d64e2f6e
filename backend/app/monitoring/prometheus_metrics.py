"""
Prometheus metrics for the payments ledger.

Service timings come from ``BaseService.measure_operation``. The ledger and
settlement counters are bumped by the services as rows change state, and the
gateway adapter counts failed calls. Everything lives on a dedicated registry
so a host application can mount it next to its own.
"""

from typing import Optional, Tuple

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

OPERATION_BUCKETS = (0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5)


class PrometheusMetrics:
    """Ledger metric families and the helpers that update them."""

    def __init__(self, registry: CollectorRegistry):
        self.registry = registry
        self.operation_seconds = Histogram(
            "payments_ledger_service_operation_duration_seconds",
            "Service operation duration in seconds",
            ["service", "operation"],
            registry=registry,
            buckets=OPERATION_BUCKETS,
        )
        self.operations = Counter(
            "payments_ledger_service_operations_total",
            "Service operations by outcome",
            ["service", "operation", "status"],
            registry=registry,
        )
        self.errors = Counter(
            "payments_ledger_errors_total",
            "Service operations that raised, by exception type",
            ["service", "operation", "error_type"],
            registry=registry,
        )
        self.transactions = Counter(
            "payments_ledger_transactions_total",
            "Ledger transactions written, by kind and resulting status",
            ["kind", "status"],
            registry=registry,
        )
        self.payouts = Counter(
            "payments_ledger_payouts_total",
            "Payout state changes, by resulting status",
            ["status"],
            registry=registry,
        )
        self.gateway_errors = Counter(
            "payments_ledger_gateway_errors_total",
            "Gateway calls that failed or timed out",
            ["operation"],  # charge | refund | transfer
            registry=registry,
        )

    def record_service_operation(
        self,
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        self.operation_seconds.labels(service=service, operation=operation).observe(duration)
        self.operations.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            self.errors.labels(service=service, operation=operation, error_type=error_type).inc()

    def inc_transaction(self, kind: str, status: str) -> None:
        self.transactions.labels(kind=kind, status=status).inc()

    def inc_payout(self, status: str) -> None:
        self.payouts.labels(status=status).inc()

    def inc_gateway_error(self, operation: str) -> None:
        self.gateway_errors.labels(operation=operation).inc()

    def exposition(self) -> Tuple[bytes, str]:
        """Current samples in text exposition format, with the matching content type."""
        return generate_latest(self.registry), CONTENT_TYPE_LATEST


prometheus_metrics = PrometheusMetrics(REGISTRY)
