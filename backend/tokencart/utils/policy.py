"""Access policy gate - who may operate on whose per-principal resources"""
import fnmatch
from typing import Dict, Optional, Tuple

from tokencart.errors import ForbiddenError
from tokencart.utils.logger import logger

CART_READ = "cart:read"
CART_WRITE = "cart:write"
CART_CLEAR = "cart:clear"
SESSION_CLEAR = "session:clear"
PRINCIPAL_REGISTER = "principal:register"
PRINCIPAL_PASSWORD = "principal:password"

# Operations a role may perform on resources owned by *other* principals.
# Owners can always operate on their own resources.
DEFAULT_ROLE_GRANTS: Dict[str, Tuple[str, ...]] = {
    "admin": ("cart:*",),
    "support": (CART_READ,),
    "customer": (),
}


class AccessPolicy:
    """Decides whether a principal may perform an operation on a resource.

    Permitted iff the principal owns the resource, or its role (granted
    out-of-band and carried on the principal) holds a matching grant.
    """

    def __init__(self, role_grants: Optional[Dict[str, Tuple[str, ...]]] = None):
        self.role_grants = DEFAULT_ROLE_GRANTS if role_grants is None else role_grants

    def authorize(self, principal_id: str, operation: str, resource_owner_id: str, role: Optional[str] = None) -> bool:
        if principal_id == resource_owner_id:
            return True
        grants = self.role_grants.get(role or "", ())
        return any(fnmatch.fnmatchcase(operation, pattern) for pattern in grants)

    def require(self, principal_id: str, operation: str, resource_owner_id: str, role: Optional[str] = None) -> None:
        """Raise :class:`ForbiddenError` unless :meth:`authorize` permits the operation."""
        if self.authorize(principal_id, operation, resource_owner_id, role):
            return
        logger.warning(
            f"Forbidden: {principal_id} -> {operation} on {resource_owner_id}",
            extra={
                "principal_id": principal_id,
                "operation": operation,
                "owner_id": resource_owner_id,
                "action": "authorize",
            },
        )
        raise ForbiddenError(principal_id, operation, resource_owner_id)
