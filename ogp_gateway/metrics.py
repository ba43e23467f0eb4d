"""Prometheus metrics for the OGP gateway (optional).

This module is designed to be safe even if prometheus_client is not installed.
If prometheus_client is missing, all functions become no-ops.

Metrics goals:
- low-cardinality labels (no relayer/watcher/message identifiers)
- internal observability for pre-verification, admission, flags, dependencies
"""
from __future__ import annotations

import os
import time
from typing import Callable, Optional

PROM_AVAILABLE = False
try:
    from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST  # type: ignore
    PROM_AVAILABLE = True
except Exception:  # pragma: no cover
    Counter = Histogram = Gauge = None  # type: ignore
    generate_latest = None  # type: ignore
    CONTENT_TYPE_LATEST = "text/plain; version=0.0.4"


def _env_bool(name: str, default: bool = True) -> bool:
    v = (os.getenv(name, "") or "").strip().lower()
    if not v:
        return default
    return v in ("1", "true", "yes", "on")


# ---------------------------
# Core metric objects
# ---------------------------
if PROM_AVAILABLE:
    HTTP_REQUESTS_TOTAL = Counter(
        "ogp_http_requests_total",
        "Total HTTP requests received",
        ["method", "route", "status"],
    )
    HTTP_REQUEST_LATENCY_SECONDS = Histogram(
        "ogp_http_request_latency_seconds",
        "HTTP request latency in seconds",
        ["method", "route"],
        buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
    )
    PREVERIFY_TOTAL = Counter(
        "ogp_preverify_total",
        "Total pre-verification requests",
        ["outcome"],
    )
    DELIVERY_ADMISSION_TOTAL = Counter(
        "ogp_delivery_admission_total",
        "Delivery admission checks",
        ["result"],
    )
    FLAGS_TOTAL = Counter(
        "ogp_flags_total",
        "Watcher flags received",
        ["kind", "counted"],
    )
    PENDING_SESSIONS = Gauge(
        "ogp_pending_sessions",
        "Relayers currently holding a message pending delivery",
    )
else:  # pragma: no cover
    HTTP_REQUESTS_TOTAL = HTTP_REQUEST_LATENCY_SECONDS = PREVERIFY_TOTAL = None
    DELIVERY_ADMISSION_TOTAL = FLAGS_TOTAL = PENDING_SESSIONS = None


def record_preverify(outcome: str) -> None:
    if PROM_AVAILABLE and PREVERIFY_TOTAL is not None:
        PREVERIFY_TOTAL.labels(outcome=str(outcome)).inc()


def record_admission(result: str) -> None:
    if PROM_AVAILABLE and DELIVERY_ADMISSION_TOTAL is not None:
        DELIVERY_ADMISSION_TOTAL.labels(result=str(result)).inc()


def record_flag(kind: str, counted: bool) -> None:
    if PROM_AVAILABLE and FLAGS_TOTAL is not None:
        FLAGS_TOTAL.labels(kind=str(kind), counted="1" if counted else "0").inc()


def set_pending_sessions(n: int) -> None:
    if PROM_AVAILABLE and PENDING_SESSIONS is not None:
        PENDING_SESSIONS.set(float(n))


def instrument_fastapi(app, authorize: Optional[Callable] = None) -> None:
    """Attach /metrics endpoint and request middleware to a FastAPI app.

    authorize: callable(request) -> bool. If provided and returns False, /metrics returns 403.
    """
    if not PROM_AVAILABLE:
        return
    if not _env_bool("OGP_METRICS_ENABLED", True):
        return

    from fastapi import Request
    from fastapi.responses import Response

    @app.middleware("http")
    async def _metrics_middleware(request, call_next):
        start = time.time()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            route = request.scope.get("route")
            route_path = getattr(route, "path", None) or request.url.path
            HTTP_REQUESTS_TOTAL.labels(method=request.method, route=route_path, status=str(status)).inc()
            HTTP_REQUEST_LATENCY_SECONDS.labels(method=request.method, route=route_path).observe(time.time() - start)

    @app.get("/metrics")
    async def metrics_endpoint(request: Request):
        if authorize is not None and not authorize(request):
            return Response(status_code=403, content="FORBIDDEN")
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
