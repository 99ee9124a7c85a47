"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Reservation metrics
reservation_attempts = Counter(
    'reservation_attempts_total',
    'Total spot reservation attempts',
    ['status']  # success, conflict, rejected, error
)

reservation_latency = Histogram(
    'reservation_latency_seconds',
    'Payment initiation latency, reservation plus gateway intent',
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0]
)

stale_payments_swept = Counter(
    'stale_payments_swept_total',
    'Abandoned PENDING payments canceled by the staleness sweep'
)

# Database metrics
db_retries = Counter(
    'db_retry_attempts_total',
    'Optimistic lock retries due to match version conflicts'
)

# Listing cache metrics
cache_lookups = Counter(
    'listing_cache_lookups_total',
    'Match listing cache lookups',
    ['result']  # hit, miss, error
)

# Settlement metrics
webhook_events = Counter(
    'webhook_events_total',
    'Gateway webhook events received',
    ['event_type', 'outcome']  # applied, duplicate, ignored, error
)

# Payout metrics
payouts = Counter(
    'payouts_total',
    'Payout attempts',
    ['result']  # success, discrepancy, gateway_error, rejected
)


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Usage:
        @app.get("/metrics")
        def metrics():
            return metrics_endpoint()
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


# Convenience functions for instrumentation
def record_reservation_attempt(status: str):
    """Record reservation attempt. Status: success, conflict, rejected, error"""
    reservation_attempts.labels(status=status).inc()


def record_webhook_event(event_type: str, outcome: str):
    webhook_events.labels(event_type=event_type, outcome=outcome).inc()


def record_payout(result: str):
    payouts.labels(result=result).inc()


def record_cache_lookup(result: str):
    cache_lookups.labels(result=result).inc()
