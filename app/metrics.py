"""
Prometheus metrics for the webhook bridge.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Webhook verification and per-message ingestion outcome counters
- Outbound send outcome counter

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# result: verified, forbidden, bad_request
webhook_verifications_total = Counter(
    "webhook_verifications_total",
    "Webhook subscription handshake outcomes",
    labelnames=["result"]
)

# result: stored, duplicate, skipped, failed
webhook_messages_total = Counter(
    "webhook_messages_total",
    "Inbound message ingestion outcomes",
    labelnames=["result"]
)

# result: sent, bad_request, send_failed, store_failed
send_requests_total = Counter(
    "send_requests_total",
    "Outbound send outcomes",
    labelnames=["result"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    normalized_path = path.split("?")[0]

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_verification_outcome(result: str) -> None:
    webhook_verifications_total.labels(result=result).inc()


def record_message_outcome(result: str, count: int = 1) -> None:
    """Record ingestion outcomes for `count` inbound messages."""
    if count:
        webhook_messages_total.labels(result=result).inc(count)


def record_send_outcome(result: str) -> None:
    send_requests_total.labels(result=result).inc()


def get_metrics() -> bytes:
    """Generate Prometheus exposition format metrics."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
