"""
Prometheus metrics for the delivery engine.

All collectors live in the global REGISTRY; import this module at app startup
(or let the engine import it) and expose them with `prometheus_client.start_http_server`.
"""

from prometheus_client import Counter, Gauge, Histogram


# --- Delivery metrics ---

MESSAGES_PUBLISHED_TOTAL = Counter(
    "item_publisher_messages_total",
    "Message entries by final outcome of a publish call",
    ["queue", "outcome"],
)

DELIVERY_ATTEMPTS_TOTAL = Counter(
    "item_publisher_delivery_attempts_total",
    "Downstream batch attempts by outcome kind",
    ["queue", "kind"],
)

RETRY_ROUNDS_TOTAL = Counter(
    "item_publisher_retry_rounds_total",
    "Retry rounds scheduled after a partially or totally failed attempt",
    ["queue"],
)

PUBLISH_LATENCY_SECONDS = Histogram(
    "item_publisher_publish_latency_seconds",
    "Wall time of one publish call (all groups, all rounds)",
    ["queue"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60],
)

ITEMS_PUBLISHED_TOTAL = Counter(
    "item_publisher_items_published_total",
    "Items confirmed delivered by the publishing workflow",
    ["request_source"],
)

# --- Breaker / audit metrics ---

CIRCUIT_STATE = Gauge(
    "item_publisher_circuit_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["breaker"],
)

AUDIT_APPEND_FAILURES_TOTAL = Counter(
    "item_publisher_audit_append_failures_total",
    "Audit records that could not be written",
    ["operation"],
)


class MetricsRegistry:
    """Centralized access to the publisher's metrics."""

    messages_published_total = MESSAGES_PUBLISHED_TOTAL
    delivery_attempts_total = DELIVERY_ATTEMPTS_TOTAL
    retry_rounds_total = RETRY_ROUNDS_TOTAL
    publish_latency_seconds = PUBLISH_LATENCY_SECONDS
    items_published_total = ITEMS_PUBLISHED_TOTAL
    circuit_state = CIRCUIT_STATE
    audit_append_failures_total = AUDIT_APPEND_FAILURES_TOTAL


metrics_registry = MetricsRegistry()
