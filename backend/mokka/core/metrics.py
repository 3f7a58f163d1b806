"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Booking metrics
booking_attempts = Counter(
    'rsvp_booking_attempts_total',
    'Total booking attempts',
    ['status']  # success, conflict, invalid, not_found, error
)

booking_latency = Histogram(
    'rsvp_booking_latency_seconds',
    'Booking transaction latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

# Capacity store metrics
capacity_operations = Counter(
    'rsvp_capacity_operations_total',
    'Atomic capacity updates',
    ['operation', 'result']  # reserve/adjust, applied/rejected
)

seats_released = Counter(
    'rsvp_seats_released_total',
    'Seats credited back to sessions',
    ['source']  # cancel, modify, delete
)

reservation_changes = Counter(
    'rsvp_reservation_changes_total',
    'Reservation modifications, cancellations and deletions',
    ['action']  # modify, cancel, delete
)

# Self-service verification
verification_events = Counter(
    'rsvp_verification_events_total',
    'Verification code requests and checks',
    ['event']  # issued, verified, rejected
)

# Cache metrics
cache_operations = Counter(
    'rsvp_cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


# Convenience functions for instrumentation
def record_booking_attempt(status: str):
    """Record booking attempt. Status: success, conflict, invalid, not_found, error"""
    booking_attempts.labels(status=status).inc()


def record_capacity_operation(operation: str, applied: bool):
    result = "applied" if applied else "rejected"
    capacity_operations.labels(operation=operation, result=result).inc()


def record_seats_released(source: str, seats: int):
    if seats > 0:
        seats_released.labels(source=source).inc(seats)


def record_reservation_change(action: str, count: int = 1):
    if count > 0:
        reservation_changes.labels(action=action).inc(count)


def record_verification(event: str):
    verification_events.labels(event=event).inc()


def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()
