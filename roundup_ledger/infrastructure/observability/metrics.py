"""Prometheus metrics for ingestion outcomes, settlements, connection health and outbound calls"""

from prometheus_client import Counter, Histogram

# Ingestion metrics
roundup_ingested_counter = Counter(
    "roundup_transactions_total",
    "Provider transactions seen by ingestion",
    ["outcome"],  # accepted | duplicate | pending | credit | excluded_category | ...
)

roundup_cents_counter = Counter(
    "roundup_accumulated_cents_total",
    "Round-up cents added to monthly accumulators",
)

# Settlement metrics
settlement_counter = Counter(
    "roundup_settlements_total",
    "Settlement attempts",
    ["outcome"],  # initiated | duplicate | nothing_to_settle | unknown | failed
)

settlement_amount_histogram = Histogram(
    "roundup_settlement_amount_cents",
    "Base amount of initiated settlements",
    buckets=[300, 1000, 2500, 5000, 10_000, 25_000, 50_000, 100_000],
)

processor_latency_histogram = Histogram(
    "payment_processor_latency_seconds",
    "Payment processor charge request time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# Connection metrics
connection_transition_counter = Counter(
    "bank_connection_transitions_total",
    "Consent state transitions",
    ["state"],  # error | revoked | expired
)

webhook_event_counter = Counter(
    "inbound_webhook_events_total",
    "Inbound webhook events by source and normalized kind",
    ["source", "kind"],
)

aggregator_failures_counter = Counter(
    "aggregator_failures_total",
    "Failed bank aggregator calls",
    ["provider"],
)

# Notification webhook metrics
notification_latency_histogram = Histogram(
    "notification_latency_seconds",
    "Notification webhook response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

notification_failure_counter = Counter(
    "notification_failures_total",
    "Failed notification deliveries",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_settlement(outcome: str, base_amount_cents: int = 0) -> None:
    """Record settlement outcome; only initiated settlements feed the amount distribution"""
    settlement_counter.labels(outcome=outcome).inc()
    if outcome == "initiated" and base_amount_cents > 0:
        settlement_amount_histogram.observe(base_amount_cents)
