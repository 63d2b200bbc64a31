"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from fastapi import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

# Inventory metrics
reservation_attempts = Counter(
    'boxoffice_reservation_attempts_total',
    'Inventory reservation attempts',
    ['result']  # reserved, out_of_stock, order_limit, window_closed, inactive, not_found
)

reservations_released = Counter(
    'boxoffice_reservations_released_total',
    'Soft holds returned to the pool',
    ['reason']  # cancelled, expired, payment_failed
)

# Checkout metrics
orders_created = Counter(
    'boxoffice_orders_created_total',
    'Orders persisted as pending'
)

order_creation_latency = Histogram(
    'boxoffice_order_creation_latency_seconds',
    'Order creation latency',
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)

payment_confirmations = Counter(
    'boxoffice_payment_confirmations_total',
    'Payment confirmation callbacks',
    ['result']  # confirmed, duplicate, rejected
)

tickets_issued = Counter(
    'boxoffice_tickets_issued_total',
    'Tickets minted',
    ['kind']  # order, complimentary
)

ticket_code_collisions = Counter(
    'boxoffice_ticket_code_collisions_total',
    'Generated ticket codes rejected because they already existed'
)

# Door metrics
checkins = Counter(
    'boxoffice_checkins_total',
    'Check-in attempts',
    ['result']  # admitted, already_used, not_found, transfer_pending
)

# Transfer metrics
transfers = Counter(
    'boxoffice_transfers_total',
    'Transfer state transitions',
    ['transition']  # initiated, accepted, rejected, cancelled
)

# Background sweeper
pending_orders_expired = Counter(
    'boxoffice_pending_orders_expired_total',
    'Abandoned pending orders cancelled by the expiry sweep'
)

expiry_sweep_running = Gauge(
    'boxoffice_expiry_sweep_running',
    'Expiry sweeper state (1=running, 0=stopped)'
)

expiry_sweep_failures = Counter(
    'boxoffice_expiry_sweep_failures_total',
    'Sweep passes that raised; the sweeper retries on the next interval'
)

notification_failures = Counter(
    'boxoffice_notification_failures_total',
    'Notifications that could not be delivered',
    ['kind']
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_reservation(result: str):
    """Record reservation outcome."""
    reservation_attempts.labels(result=result).inc()


def record_release(reason: str, count: int = 1):
    reservations_released.labels(reason=reason).inc(count)


def record_checkin(result: str):
    checkins.labels(result=result).inc()


def record_transfer(transition: str):
    transfers.labels(transition=transition).inc()
