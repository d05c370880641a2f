"""Prometheus metrics collection and configuration."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from prometheus_client import Counter
from prometheus_fastapi_instrumentator import Instrumentator

if TYPE_CHECKING:
    from fastapi import FastAPI
    from prometheus_client.registry import CollectorRegistry

# Business metrics
PAYMENT_INITIATIONS_TOTAL = Counter(
    "payment_initiations_total",
    "Mobile money charges started, by product kind and outcome",
    ["product_kind", "outcome"],
)

PAYMENT_TRANSITIONS_TOTAL = Counter(
    "payment_transitions_total",
    "Payment attempts moved to a terminal status",
    ["source", "status"],
)

PAYMENT_AMOUNT_TOTAL = Counter(
    "payment_amount_total",
    "Total amount confirmed by the provider",
    ["currency"],
)

WEBHOOK_EVENTS_TOTAL = Counter(
    "payment_webhook_events_total",
    "Provider webhook deliveries, by outcome",
    ["outcome"],
)

LEDGER_ACTIVATIONS_TOTAL = Counter(
    "ledger_activations_total",
    "Activation procedure invocations, by result",
    ["entry_type", "result"],
)


class MetricsService:
    """Service for managing Prometheus metrics."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry: CollectorRegistry | None = registry
        self._instrumentator: Instrumentator | None = None

    def create_instrumentator(self, settings: Any) -> Instrumentator:
        """Create and configure the FastAPI HTTP instrumentator."""

        kwargs: dict[str, Any] = {}
        if self.registry is not None:
            kwargs["registry"] = self.registry
        return Instrumentator(
            should_group_status_codes=settings.should_group_status_codes,
            should_ignore_untemplated=settings.should_ignore_untemplated,
            should_group_untemplated=settings.should_group_untemplated,
            should_respect_env_var=settings.should_respect_env_var,
            excluded_handlers=settings.excluded_handlers,
            env_var_name="ENABLE_METRICS",
            **kwargs,
        )

    def instrument_app(self, app: FastAPI, settings: Any) -> None:
        if not settings.enabled:
            return

        self._instrumentator = self.create_instrumentator(settings)
        self._instrumentator.instrument(app)
        self._instrumentator.expose(
            app,
            should_gzip=True,
            endpoint=settings.metrics_path,
            include_in_schema=False,
        )

    def record_initiation(self, product_kind: str, outcome: str) -> None:
        PAYMENT_INITIATIONS_TOTAL.labels(product_kind=product_kind, outcome=outcome).inc()

    def record_transition(
        self, source: str, status: str, *, amount: int = 0, currency: str = ""
    ) -> None:
        """Record a terminal transition and, for completions, the confirmed amount."""

        PAYMENT_TRANSITIONS_TOTAL.labels(source=source, status=status).inc()
        if status == "completed" and amount > 0:
            PAYMENT_AMOUNT_TOTAL.labels(currency=currency).inc(amount)

    def record_webhook(self, outcome: str) -> None:
        WEBHOOK_EVENTS_TOTAL.labels(outcome=outcome).inc()

    def record_activation(self, entry_type: str, result: str) -> None:
        LEDGER_ACTIVATIONS_TOTAL.labels(entry_type=entry_type, result=result).inc()


# Global metrics service instance
metrics_service = MetricsService()
