"""Prometheus metrics middleware and auction domain counters."""
import time
from typing import Callable

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from prometheus_client import CONTENT_TYPE_LATEST
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


# =============================================================================
# Prometheus Metrics Definitions
# =============================================================================

# Request metrics
REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_requests_active",
    "Number of active HTTP requests",
)

# Bid admission metrics
BID_COUNTER = Counter(
    "bids_total",
    "Bid admission attempts by outcome",
    ["outcome"],  # accepted or the rejection code
)

BID_LATENCY = Histogram(
    "bid_admission_seconds",
    "Bid admission latency in seconds, lock wait included",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0],
)

# Closer metrics
AUCTIONS_CLOSED = Counter(
    "auctions_closed_total",
    "Auctions reaching a closed terminal state",
    ["outcome"],
)

FINALIZATION_FAILURES = Counter(
    "auction_finalization_failures_total",
    "Failed finalization attempts",
)

# Notification metrics
NOTIFICATION_COUNTER = Counter(
    "notifications_total",
    "Notification deliveries",
    ["kind", "status"],  # delivered, duplicate, retried, dropped
)


# =============================================================================
# Metrics Middleware
# =============================================================================

class PrometheusMiddleware(BaseHTTPMiddleware):
    """Middleware to collect Prometheus metrics for all HTTP requests."""

    # Endpoints to normalize for metrics (reduce cardinality)
    ENDPOINT_PATTERNS = {
        "/api/v1/auctions": "/api/v1/auctions",
        "/api/v1/bids": "/api/v1/bids",
        "/api/v1/notifications": "/api/v1/notifications",
        "/api/v1/orders": "/api/v1/orders",
    }

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Skip metrics endpoint to avoid recursion
        if request.url.path == "/metrics":
            return await call_next(request)

        ACTIVE_REQUESTS.inc()
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception:
            status_code = 500
            raise
        finally:
            ACTIVE_REQUESTS.dec()
            latency = time.perf_counter() - start_time
            endpoint = self._normalize_endpoint(request.url.path)

            REQUEST_COUNT.labels(
                method=request.method,
                endpoint=endpoint,
                status=status_code,
            ).inc()

            REQUEST_LATENCY.labels(
                method=request.method,
                endpoint=endpoint,
            ).observe(latency)

        return response

    def _normalize_endpoint(self, path: str) -> str:
        """Normalize endpoint path to reduce metric cardinality."""
        for pattern, normalized in self.ENDPOINT_PATTERNS.items():
            if path.startswith(pattern):
                return normalized

        # Keep health and other endpoints as-is
        if path.startswith("/ws"):
            return "/ws"
        if path in ("/health", "/metrics"):
            return path

        return "/other"


# =============================================================================
# Metrics Endpoint
# =============================================================================

async def metrics_endpoint(request: Request) -> Response:
    """Prometheus metrics scrape endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )


# =============================================================================
# Helper Functions for Manual Metric Recording
# =============================================================================

def record_bid(outcome: str, duration: float) -> None:
    """Record a bid admission attempt."""
    BID_COUNTER.labels(outcome=outcome).inc()
    BID_LATENCY.observe(duration)


def record_auction_closed(outcome: str) -> None:
    AUCTIONS_CLOSED.labels(outcome=outcome).inc()


def record_finalization_failure() -> None:
    FINALIZATION_FAILURES.inc()


def record_notification(kind: str, status: str) -> None:
    NOTIFICATION_COUNTER.labels(kind=kind, status=status).inc()
