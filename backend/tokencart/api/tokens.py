"""Token issuance, refresh, revocation, and JWKS endpoints"""
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from tokencart.api.deps import get_bearer_token, get_services
from tokencart.database import get_db
from tokencart.errors import AuthError, AuthFailure
from tokencart.middleware.rate_limit import get_rate_limit, limiter
from tokencart.models.principal import Principal
from tokencart.schemas.token import LoginRequest, RevokeResponse, TokenResponse
from tokencart.services import Services
from tokencart.utils.jwt_utils import IssuedToken
from tokencart.utils.logger import logger
from tokencart.utils.policy import SESSION_CLEAR
from tokencart.utils.retry import call_with_retry

router = APIRouter(tags=["authentication"])


def _token_response(issued: IssuedToken) -> TokenResponse:
    return TokenResponse(
        token=issued.token,
        expires_at=datetime.fromtimestamp(issued.expires_at, tz=timezone.utc),
        expires_in=issued.expires_in,
    )


# ---------------------------------------------------------------------------
# POST /auth/login
# ---------------------------------------------------------------------------

@router.post("/auth/login", response_model=TokenResponse)
@limiter.limit(get_rate_limit("login"))
def login(
    request: Request,
    credentials: LoginRequest,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
) -> TokenResponse:
    """Exchange an identifier and secret for a signed access token.

    Use the returned token as `Authorization: Bearer <token>` on subsequent
    calls. Every failure (unknown identifier, wrong secret, inactive account)
    produces the same 401 response.
    """
    principal = db.query(Principal).filter(Principal.principal_id == credentials.identifier).first()

    if principal is None:
        services.hasher.verify_dummy(credentials.secret)
        raise AuthError(AuthFailure.BAD_CREDENTIALS, principal_id=credentials.identifier)

    if not services.hasher.verify(credentials.secret, principal.password_hash, principal.password_salt):
        raise AuthError(AuthFailure.BAD_CREDENTIALS, principal_id=principal.principal_id)

    if not principal.is_active:
        raise AuthError(AuthFailure.INACTIVE, principal_id=principal.principal_id)

    issued = services.tokens.issue(principal.principal_id, role=principal.role)
    logger.info(
        f"Login succeeded for {principal.principal_id}",
        extra={"principal_id": principal.principal_id, "token_id": issued.token_id, "action": "login"},
    )
    return _token_response(issued)


# ---------------------------------------------------------------------------
# POST /auth/refresh
# ---------------------------------------------------------------------------

@router.post("/auth/refresh", response_model=TokenResponse)
@limiter.limit(get_rate_limit("refresh"))
def refresh(
    request: Request,
    token: str = Depends(get_bearer_token),
    services: Services = Depends(get_services),
) -> TokenResponse:
    """Exchange a still-valid token for a new one. The presented token is revoked."""
    return _token_response(services.tokens.refresh(token))


# ---------------------------------------------------------------------------
# POST /auth/logout
# ---------------------------------------------------------------------------

@router.post("/auth/logout", response_model=RevokeResponse)
def logout(
    token: str = Depends(get_bearer_token),
    services: Services = Depends(get_services),
) -> RevokeResponse:
    """Revoke the presented token and, if configured, drop the caller's session state.

    The session is cleared before the token is revoked: if the store is
    unavailable the call fails with 503 and the still-valid token can be used
    to retry the logout. Any request after a successful logout returns 401.
    """
    claims = services.tokens.verify(token)

    if services.settings.CLEAR_SESSION_ON_LOGOUT:
        call_with_retry(
            lambda: services.sessions.clear(claims.principal_id),
            attempts=services.settings.STORE_RETRY_ATTEMPTS,
            initial_delay=services.settings.STORE_RETRY_BACKOFF_SECONDS,
            operation=SESSION_CLEAR,
        )

    revoked = services.tokens.revoke(token)

    logger.info(
        f"Logout for {claims.principal_id}",
        extra={"principal_id": claims.principal_id, "token_id": claims.token_id, "action": "logout"},
    )
    return RevokeResponse(revoked=revoked)


# ---------------------------------------------------------------------------
# GET /.well-known/jwks.json
# ---------------------------------------------------------------------------

@router.get("/.well-known/jwks.json", response_model=Dict[str, Any])
def jwks(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Return the public key set (JWKS) for verifying issued tokens.

    Unauthenticated. Empty when tokens are signed with a shared secret (HS*).
    """
    return services.tokens.jwks()
