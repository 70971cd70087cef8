"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
orders_created_total = Counter(
    "orders_created_total",
    "Total number of orders created",
    ["product_id"],
)

orders_settled_total = Counter(
    "orders_settled_total",
    "Settlement outcomes of order payment checks",
    ["outcome"],  # paid, already_paid, not_settled, canceled, key_unavailable
)

out_of_stock_total = Counter(
    "out_of_stock_total",
    "Buy attempts rejected because the key pool is empty",
    ["product_id"],
)

topups_total = Counter(
    "topups_total",
    "Top-up lifecycle events",
    ["kind", "event"],  # kind: wallet/steam, event: created/paid/canceled
)

wallet_operations_total = Counter(
    "wallet_operations_total",
    "Wallet ledger operations",
    ["kind"],  # deposit, withdrawal, rejected
)

gateway_requests_total = Counter(
    "gateway_requests_total",
    "Total payment gateway requests",
    ["method", "status"],
)

telegram_requests_total = Counter(
    "telegram_requests_total",
    "Total Telegram API requests",
    ["method", "status"],
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "Payment gateway request duration",
    ["method"],
    buckets=[0.1, 0.25, 0.5, 1, 2, 5, 10],
)

telegram_request_duration_seconds = Histogram(
    "telegram_request_duration_seconds",
    "Telegram API request duration",
    ["method"],
    buckets=[0.1, 0.5, 1, 2, 5, 10],
)


# Metrics endpoint router
router = APIRouter()


@router.get("/metrics")
def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
