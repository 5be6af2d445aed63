"""
Prometheus metrics: HTTP traffic plus the storefront counters
(orders, gateway payments, webhooks, notifications, coupon redemptions).
"""
import time

from fastapi import Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from prometheus_client.openmetrics.exposition import (
    CONTENT_TYPE_LATEST as OPENMETRICS_CONTENT_TYPE,
    generate_latest as generate_latest_openmetrics,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

# Paths left out of the request metrics
UNTRACKED_PATHS = ("/metrics", "/health")

http_requests_total = Counter(
    "http_requests_total",
    "HTTP requests by route and status",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency by route",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

orders_created_total = Counter(
    "orders_created_total",
    "Orders created by event pricing type and payment method",
    ["pricing_type", "payment_method"],
)

payments_processed_total = Counter(
    "payments_processed_total",
    "Gateway payments by method and resulting status",
    ["method", "status"],
)

webhook_events_total = Counter(
    "webhook_events_total",
    "Mercado Pago webhook deliveries by outcome",
    ["result"],
)

notifications_sent_total = Counter(
    "notifications_sent_total",
    "Outbound notifications by channel and outcome",
    ["channel", "status"],
)

coupon_redemptions_total = Counter(
    "coupon_redemptions_total",
    "Coupons redeemed on confirmed orders",
)


def _endpoint_label(request: Request) -> str:
    """Route template (``/api/orders/{order_number}``) so path params don't explode cardinality."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if request.url.path in UNTRACKED_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            endpoint = _endpoint_label(request)
            http_requests_total.labels(request.method, endpoint, status_code).inc()
            http_request_duration_seconds.labels(request.method, endpoint).observe(time.perf_counter() - started)


def get_metrics_response(openmetrics: bool = False) -> Response:
    """Exposition in the Prometheus text format, or OpenMetrics when asked."""
    if openmetrics:
        return Response(content=generate_latest_openmetrics(), media_type=OPENMETRICS_CONTENT_TYPE)
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
