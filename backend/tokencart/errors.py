"""Error taxonomy.

Internal failures are raised as the exceptions below and converted to HTTP
responses in exactly one place: the exception handlers registered in
``tokencart.main``. Only three client-visible outcomes exist for them:

    AuthError             -> 401 (reason kept for logs and metrics only)
    ForbiddenError        -> 403
    StoreUnavailableError -> 503 (retryable)

``HashingError`` and ``KeyUnavailableError`` are environment/configuration
faults and surface as a generic 500.
"""
from enum import Enum
from typing import Optional


class AuthFailure(str, Enum):
    """Why a request could not be authenticated"""

    MISSING = "missing"
    MALFORMED = "malformed"
    BAD_SIGNATURE = "bad_signature"
    EXPIRED = "expired"
    REVOKED = "revoked"
    BAD_CREDENTIALS = "bad_credentials"
    INACTIVE = "inactive"


class TokenCartError(Exception):
    """Base class for all tokencart errors"""


class HashingError(TokenCartError):
    """The credential hasher could not produce a hash (e.g. no entropy source)."""


class KeyUnavailableError(TokenCartError):
    """The token signing key could not be loaded."""


class AuthError(TokenCartError):
    """Authentication failed. Never retried; the client must re-authenticate."""

    def __init__(self, reason: AuthFailure, principal_id: Optional[str] = None):
        self.reason = reason
        self.principal_id = principal_id
        super().__init__(reason.value)


class ForbiddenError(TokenCartError):
    """An authenticated principal may not perform an operation on a resource."""

    def __init__(self, principal_id: str, operation: str, owner_id: str):
        self.principal_id = principal_id
        self.operation = operation
        self.owner_id = owner_id
        super().__init__(f"{principal_id} may not {operation} on resource owned by {owner_id}")


class StoreUnavailableError(TokenCartError):
    """The session or revocation store did not answer in time.

    ``operation`` names the store call that failed (``cart:write``,
    ``session:clear``, ...); it is filled in by the retry layer when the
    backend itself does not know it.
    """

    def __init__(self, message: str = "store unavailable", operation: Optional[str] = None):
        self.operation = operation
        super().__init__(message)
