import time
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter

REQ_COUNTER = Counter("http_requests_total", "Total HTTP Requests", ["method", "path", "status"])
REQ_LATENCY = Histogram("http_request_latency_seconds", "Request latency", ["method", "path"])

# mode: upstream | mock | fallback
CHAT_STREAMS = Counter("chat_streams_total", "Chat responses by provider and mode", ["provider", "mode"])
UPSTREAM_FAILURES = Counter(
    "chat_upstream_failures_total", "Upstream provider failures", ["provider", "stage"]
)
CLIENT_ABORTS = Counter("chat_client_aborts_total", "Streams stopped by client abort", ["provider"])


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            latency = time.perf_counter() - start
            route = request.scope.get("route")
            path = getattr(route, "path", request.url.path)
            method = request.method
            REQ_COUNTER.labels(method, path, status).inc()
            REQ_LATENCY.labels(method, path).observe(latency)


metrics_router = APIRouter()


@metrics_router.get("/metrics", include_in_schema=False)
async def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
