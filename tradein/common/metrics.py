"""Prometheus metric definitions shared across the trade-in components."""

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)
assessment_queue_depth = Gauge(
    "assessment_queue_depth",
    "Trade-ins currently waiting in the in-process assessment queue",
    ["service"],
)
assessments_total = Counter(
    "assessments_total",
    "Completed assessment attempts by outcome",
    ["service", "outcome"],
)
assessment_latency_seconds = Histogram(
    "assessment_latency_seconds",
    "Assessment provider call latency seconds",
    ["service", "provider"],
)
assessment_retries_total = Counter(
    "assessment_retries_total",
    "Assessment retries scheduled with backoff",
    ["service"],
)
credit_lock_attempts_total = Counter(
    "credit_lock_attempts_total",
    "Credit note lock attempts by result",
    ["service", "result"],
)
credit_lock_contention_total = Counter(
    "credit_lock_contention_total",
    "Credit note lock attempts rejected because capacity was reserved elsewhere",
    ["service", "reason"],
)
credit_consumed_cents_total = Counter(
    "credit_consumed_cents_total",
    "Credit note value consumed by completed orders, in cents",
    ["service"],
)
webhook_events_total = Counter(
    "webhook_events_total",
    "Inbound webhook events by type and outcome",
    ["service", "event_type", "outcome"],
)
duplicate_events_skipped_total = Counter(
    "duplicate_events_skipped_total",
    "Duplicate webhook deliveries skipped",
    ["service", "event_type"],
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
sweep_items_total = Counter(
    "sweep_items_total",
    "Rows changed by periodic sweeps",
    ["service", "sweep"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
