"""Rate limiting for credential-accepting endpoints"""
from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from tokencart.config import settings


def get_identifier(request: Request) -> str:
    """
    Get identifier for rate limiting

    Priority:
    1. Resolved principal (set by the auth guard)
    2. IP address (for unauthenticated requests such as login)
    """
    principal = getattr(request.state, "principal", None)
    if principal is not None:
        return f"principal:{principal.principal_id}"

    return get_remote_address(request)


limiter = Limiter(
    key_func=get_identifier,
    default_limits=settings.RATE_LIMIT_DEFAULT,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    strategy="fixed-window",
    enabled=settings.RATE_LIMIT_ENABLED,
)


# Rate limit configurations for different endpoints
RATE_LIMITS = {
    # Credential guessing surface - keep tight
    "login": "10/minute",
    "register": "5/minute",
    "password": "5/minute",

    # Token lifecycle
    "refresh": "60/minute",
}


def get_rate_limit(endpoint: str) -> str:
    """Get rate limit for specific endpoint"""
    return RATE_LIMITS.get(endpoint, settings.RATE_LIMIT_DEFAULT[0])
