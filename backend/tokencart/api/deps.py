"""API dependencies for authentication and authorization.

Every protected route depends on :func:`require_principal`, which

1. extracts ``Authorization: Bearer <token>`` (absent -> 401),
2. verifies it with the :class:`~tokencart.utils.jwt_utils.TokenAuthority`
   (any failure -> 401; the reason is logged, never returned),
3. attaches the resolved :class:`PrincipalContext` to ``request.state``.

Tokens are never reissued here; only ``POST /auth/refresh`` does that.

Per-resource checks use :func:`require_access`, which adds the access policy
gate on top (denied -> 403, distinct from 401).
"""
from typing import Callable, NamedTuple, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from tokencart.errors import AuthError, AuthFailure
from tokencart.services import Services

_bearer_scheme = HTTPBearer(auto_error=False)


class PrincipalContext(NamedTuple):
    """Resolved identity, populated by :func:`require_principal`."""
    principal_id: str
    role: str
    token_id: str
    expires_at: int


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> str:
    """Return the raw bearer token or fail with ``missing``."""
    if credentials is None or not credentials.credentials:
        raise AuthError(AuthFailure.MISSING)
    return credentials.credentials


# ---------------------------------------------------------------------------
# require_principal
# ---------------------------------------------------------------------------

def require_principal(
    request: Request,
    token: str = Depends(get_bearer_token),
    services: Services = Depends(get_services),
) -> PrincipalContext:
    """Require a valid bearer token and return the caller's identity."""
    claims = services.tokens.verify(token)
    principal = PrincipalContext(
        principal_id=claims.principal_id,
        role=claims.role,
        token_id=claims.token_id,
        expires_at=claims.expires_at,
    )
    request.state.principal = principal
    return principal


# ---------------------------------------------------------------------------
# require_access factory - policy-gated dependency
# ---------------------------------------------------------------------------

def require_access(operation: str) -> Callable:
    """Return a dependency that authorizes ``operation`` on ``{owner_id}``.

    Usage::

        @router.get("/carts/{owner_id}")
        def endpoint(owner_id: str, principal: PrincipalContext = Depends(require_access("cart:read"))):
            ...
    """

    def _access_dep(
        owner_id: str,
        principal: PrincipalContext = Depends(require_principal),
        services: Services = Depends(get_services),
    ) -> PrincipalContext:
        services.policy.require(principal.principal_id, operation, owner_id, role=principal.role)
        return principal

    # Give FastAPI a unique name so it doesn't collapse distinct dependencies
    _access_dep.__name__ = f"require_access_{operation.replace(':', '_').replace('*', 'any')}"
    return _access_dep
