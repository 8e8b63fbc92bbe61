"""
Prometheus metrics for the status relay.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Transport event outcome counter (stream, result)
- Identity resolution counter (match)

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

# stream: status, receipts
# result: accepted, malformed, not_found, reconciled, failed (once per event)
# result: invalid_signature, queue_full (once per rejected batch)
transport_events_total = Counter(
    "transport_events_total",
    "Transport delivery events by stream and outcome",
    labelnames=["stream", "result"]
)

# match: exact, fuzzy, fallback, not_found
identity_resolutions_total = Counter(
    "identity_resolutions_total",
    "Identity resolution outcomes by matching tier",
    labelnames=["match"]
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


def record_event_outcome(stream: str, result: str) -> None:
    transport_events_total.labels(stream=stream, result=result).inc()


def record_resolution(match: str) -> None:
    identity_resolutions_total.labels(match=match).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
