"""
Prometheus metrics definitions.
Used by the view route and the request-context middleware.
"""
from prometheus_client import Counter, Histogram

# ── HTTP Request metrics (used by ASGI middleware) ──

REQUEST_COUNT = Counter(
    "viewcounter_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

REQUEST_LATENCY = Histogram(
    "viewcounter_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "path"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

# ── View attribution metrics ──

VIEW_EVENTS = Counter(
    "viewcounter_view_events_total",
    "View events by dedupe outcome",
    ["outcome"],
)

STORE_ERRORS = Counter(
    "viewcounter_store_errors_total",
    "Requests that failed during the read-decide-write cycle",
)
