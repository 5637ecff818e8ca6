"""Monitoring and observability middleware"""
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware

from tokencart.utils.logger import logger


# ===== Prometheus Metrics =====

# Request metrics
http_requests_total = Counter(
    "tokencart_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "tokencart_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"]
)

# Auth metrics
authentication_failures_total = Counter(
    "tokencart_authentication_failures_total",
    "Total authentication failures",
    ["reason"]  # missing, malformed, bad_signature, expired, revoked, bad_credentials, inactive
)

authorization_denials_total = Counter(
    "tokencart_authorization_denials_total",
    "Total requests refused by the access policy",
    ["operation"]
)

# Session store metrics
session_mutations_total = Counter(
    "tokencart_session_mutations_total",
    "Total committed session state mutations",
    ["operation"]
)

store_failures_total = Counter(
    "tokencart_store_failures_total",
    "Total session/revocation store unavailability errors",
    ["operation"]
)

# Error metrics
http_errors_total = Counter(
    "tokencart_http_errors_total",
    "Total HTTP errors",
    ["method", "endpoint", "status"]
)


class MonitoringMiddleware(BaseHTTPMiddleware):
    """Per-request metrics, request ids and slow-request logging.

    Requests are labelled by route template (``/carts/{owner_id}``), not by raw
    path, so per-principal URLs do not explode label cardinality.
    """

    slow_request_seconds = 1.0

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        request_id = request.headers.get("x-request-id") or f"req_{uuid.uuid4().hex[:16]}"
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        except Exception:
            http_errors_total.labels(method=request.method, endpoint=_route_label(request), status=500).inc()
            logger.error(
                f"Request failed: {request.method} {request.url.path}",
                extra={"request_id": request_id, **_principal_extra(request)},
                exc_info=True,
            )
            raise

        duration = time.perf_counter() - started
        endpoint = _route_label(request)
        http_requests_total.labels(method=request.method, endpoint=endpoint, status=response.status_code).inc()
        http_request_duration_seconds.labels(method=request.method, endpoint=endpoint).observe(duration)
        if response.status_code >= 400:
            http_errors_total.labels(method=request.method, endpoint=endpoint, status=response.status_code).inc()

        if duration > self.slow_request_seconds:
            logger.warning(
                f"Slow request: {request.method} {endpoint} took {duration:.3f}s",
                extra={"request_id": request_id, "action": "slow_request", **_principal_extra(request)},
            )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration:.3f}s"
        return response


def _route_label(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", "unmatched")


def _principal_extra(request: Request) -> dict:
    principal = getattr(request.state, "principal", None)
    return {"principal_id": principal.principal_id} if principal is not None else {}


def record_auth_failure(reason: str):
    """Record authentication failure"""
    authentication_failures_total.labels(reason=reason).inc()


def record_forbidden(operation: str):
    """Record access policy denial"""
    authorization_denials_total.labels(operation=operation).inc()


def record_session_mutation(operation: str):
    """Record a committed session mutation"""
    session_mutations_total.labels(operation=operation).inc()


def record_store_failure(operation: str):
    """Record store unavailability"""
    store_failures_total.labels(operation=operation).inc()
