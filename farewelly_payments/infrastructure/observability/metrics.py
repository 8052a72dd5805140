"""Prometheus metrics for splits, refunds, disputes, rail calls and webhook ingestion"""

from prometheus_client import Counter, Histogram

# Split metrics
split_counter = Counter(
    "farewelly_split_total",
    "Payment splits computed",
    ["purpose", "reduction"],  # reduction: applied | none
)

# Refund metrics
refund_counter = Counter(
    "farewelly_refund_total",
    "Refund requests created",
    ["mode"],  # automatic | approval
)

refund_approved_counter = Counter(
    "farewelly_refund_approved_total",
    "Pending refunds approved and submitted to a rail",
)

# Dispute metrics
dispute_counter = Counter(
    "farewelly_dispute_total",
    "Dispute lifecycle actions",
    ["action"],  # created | reviewed | escalated | resolved
)

chargeback_counter = Counter(
    "farewelly_chargeback_total",
    "Chargebacks ingested from rail webhooks",
    ["rail"],
)

# Webhook metrics
webhook_counter = Counter(
    "farewelly_webhook_total",
    "Inbound rail webhook deliveries",
    ["rail", "outcome"],  # processed | duplicate | ignored | rejected
)

# Rail API metrics
rail_latency_histogram = Histogram(
    "rail_request_latency_seconds",
    "Payment rail API response time",
    ["rail", "operation"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

rail_failure_counter = Counter(
    "rail_request_failures_total",
    "Failed payment rail API calls",
    ["rail", "operation"],
)

# Event sink metrics
event_sink_latency_histogram = Histogram(
    "event_sink_latency_seconds",
    "Downstream event sink response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

event_sink_failure_counter = Counter(
    "event_sink_failures_total",
    "Events that could not be delivered to the sink",
    ["event"],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_split(purpose: str, reduction_applied: bool) -> None:
    """Record split metrics for monitoring municipal burial reduction uptake"""
    split_counter.labels(purpose=purpose, reduction="applied" if reduction_applied else "none").inc()


def record_refund(automatic: bool) -> None:
    refund_counter.labels(mode="automatic" if automatic else "approval").inc()
