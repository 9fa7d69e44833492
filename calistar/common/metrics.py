"""Prometheus metric definitions shared across services."""

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response


checkout_requests_total = Counter(
    "checkout_requests_total",
    "PIX checkout attempts by outcome",
    ["service", "outcome"],
)
gateway_request_seconds = Histogram(
    "gateway_request_seconds",
    "Latency of outbound calls to external APIs",
    ["service", "dependency", "operation"],
)
gateway_errors_total = Counter(
    "gateway_errors_total",
    "Failed outbound calls to external APIs",
    ["service", "dependency", "operation", "kind"],
)
payment_status_polls_total = Counter(
    "payment_status_polls_total",
    "Payment status reads by mapped status",
    ["service", "status"],
)
webhook_deliveries_total = Counter(
    "webhook_deliveries_total",
    "Inbound gateway webhooks by outcome",
    ["service", "event_name", "outcome"],
)
duplicate_webhooks_skipped_total = Counter(
    "duplicate_webhooks_skipped_total",
    "Webhook redeliveries recognised and skipped",
    ["service", "event_name"],
)
order_transitions_total = Counter(
    "order_transitions_total",
    "Applied order status transitions",
    ["service", "to_state", "source"],
)
late_confirmations_total = Counter(
    "late_confirmations_total",
    "Confirmations received for orders already expired",
    ["service"],
)
paid_failed_orders_total = Counter(
    "paid_failed_orders_total",
    "Payment confirmations received for orders whose creation failed",
    ["service"],
)
tryon_requests_total = Counter(
    "tryon_requests_total",
    "Virtual try-on requests by outcome",
    ["service", "outcome"],
)
tryon_step_seconds = Histogram(
    "tryon_step_seconds",
    "Duration of one garment composition step",
    ["service", "slot"],
    buckets=(1, 2, 5, 10, 20, 30, 60, 90, 120, 180),
)
tryon_poll_attempts = Histogram(
    "tryon_poll_attempts",
    "Polls needed for a try-on task to reach a terminal status",
    ["service"],
    buckets=(1, 2, 3, 5, 10, 20, 30, 45, 60),
)
outbox_pending_total = Gauge(
    "outbox_pending_total",
    "Current count of outbox events not yet sent",
    ["service"],
)
outbox_oldest_pending_age_seconds = Gauge(
    "outbox_oldest_pending_age_seconds",
    "Age in seconds of the oldest pending outbox event",
    ["service"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
