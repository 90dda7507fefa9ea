"""
Prometheus metrics for the photo API and its workers
"""

import time

from fastapi import FastAPI, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

REQUESTS_TOTAL = Counter(
    "photoapi_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

REQUEST_DURATION = Histogram(
    "photoapi_http_request_seconds",
    "Request duration in seconds",
    ["method", "path"],
)

UPLOADS_TOTAL = Counter(
    "photoapi_uploads_total",
    "Total photo uploads",
    ["status"],
)

RESIZES_TOTAL = Counter(
    "photoapi_resizes_total",
    "Total resize events handled",
    ["status"],
)

COVER_REPAIRS = Counter(
    "photoapi_cover_repairs_total",
    "Cover images promoted on the read path",
    ["flag"],
)

COVER_CONFLICTS = Counter(
    "photoapi_cover_conflicts_total",
    "Conditional tag writes that lost a race",
)

# Flipped on by init_metrics() at startup
_enabled = False


def init_metrics(enabled: bool) -> None:
    global _enabled
    _enabled = bool(enabled)


async def metrics_endpoint():
    """Prometheus metrics endpoint"""
    if not _enabled:
        return Response(b"metrics disabled", media_type="text/plain")
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


def metrics_middleware(app: FastAPI):
    """Add metrics middleware to FastAPI app"""
    if not _enabled:
        return

    @app.middleware("http")
    async def _metrics(request: Request, call_next):
        start = time.time()
        response = await call_next(request)

        # Route template keeps label cardinality bounded
        route = request.scope.get("route")
        path = getattr(route, "path", request.url.path)
        REQUESTS_TOTAL.labels(
            method=request.method,
            path=path,
            status=str(response.status_code),
        ).inc()
        REQUEST_DURATION.labels(method=request.method, path=path).observe(time.time() - start)
        return response


def record_upload(status: str):
    if _enabled:
        UPLOADS_TOTAL.labels(status=status).inc()


def record_resize(status: str):
    if _enabled:
        RESIZES_TOTAL.labels(status=status).inc()


def record_cover_repair(flag: str):
    if _enabled:
        COVER_REPAIRS.labels(flag=flag).inc()


def record_cover_conflict():
    if _enabled:
        COVER_CONFLICTS.inc()
