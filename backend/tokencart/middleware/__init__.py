"""Middleware modules for production-ready features"""
from tokencart.middleware.monitoring import (
    MonitoringMiddleware,
    record_auth_failure,
    record_forbidden,
    record_session_mutation,
    record_store_failure,
)
from tokencart.middleware.rate_limit import get_rate_limit, limiter

__all__ = [
    "MonitoringMiddleware",
    "record_auth_failure",
    "record_forbidden",
    "record_session_mutation",
    "record_store_failure",
    "limiter",
    "get_rate_limit",
]
