"""
Pure ASGI request-context middleware: correlation ID, response header and
request metrics, without BaseHTTPMiddleware.
"""
import time
import uuid
import structlog
from starlette.types import ASGIApp, Receive, Scope, Send
from starlette.requests import Request
from app.utils.metrics import REQUEST_COUNT, REQUEST_LATENCY


def normalize_path(path: str) -> str:
    """Collapse per-repository paths so metric label cardinality stays bounded."""
    if path.startswith("/view/"):
        return "/view/{repo}"
    return path


class RequestContextMiddleware:
    """
    Single ASGI middleware that handles:
    1. Correlation ID (X-Request-ID in, X-Request-ID out, bound into structlog)
    2. Request metrics
    """

    SKIP_PATHS = frozenset({"/health", "/metrics", "/docs", "/openapi.json", "/redoc"})

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        path = request.url.path

        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())[:12]
        structlog.contextvars.bind_contextvars(request_id=req_id)

        start_time = time.monotonic()
        status_code = 500

        async def send_with_headers(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 200)
                headers = list(message.get("headers", []))
                headers.append((b"x-request-id", req_id.encode()))
                message = {**message, "headers": headers}
            await send(message)

        try:
            await self.app(scope, receive, send_with_headers)
        finally:
            if path not in self.SKIP_PATHS:
                duration = time.monotonic() - start_time
                norm = normalize_path(path)
                method = scope.get("method", "GET")
                REQUEST_COUNT.labels(method=method, path=norm, status=status_code).inc()
                REQUEST_LATENCY.labels(method=method, path=norm).observe(duration)

            structlog.contextvars.unbind_contextvars("request_id")
