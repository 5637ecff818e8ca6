"""Cart endpoints - per-principal state held in the session store.

``/cart`` addresses the caller's own cart. ``/carts/{owner_id}`` addresses
any principal's cart and is gated by the access policy, so a customer asking
for somebody else's cart gets 403 (not 401).
"""
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import APIRouter, Depends, status

from tokencart.api.deps import PrincipalContext, get_services, require_access, require_principal
from tokencart.middleware.monitoring import record_session_mutation
from tokencart.schemas.cart import CartItemCreate, CartLine, CartResponse, QuantityUpdate
from tokencart.services import Services
from tokencart.utils import cart
from tokencart.utils.logger import logger
from tokencart.utils.policy import CART_CLEAR, CART_READ, CART_WRITE
from tokencart.utils.retry import call_with_retry
from tokencart.utils.session_store import StateSnapshot

router = APIRouter(tags=["carts"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _retrying(services: Services, func: Callable, operation: str):
    return call_with_retry(
        func,
        attempts=services.settings.STORE_RETRY_ATTEMPTS,
        initial_delay=services.settings.STORE_RETRY_BACKOFF_SECONDS,
        operation=operation,
    )


def _to_response(owner_id: str, snapshot: Optional[StateSnapshot]) -> CartResponse:
    if snapshot is None:
        return CartResponse(owner_id=owner_id, items=[])
    return CartResponse(
        owner_id=owner_id,
        items=[CartLine(**line) for line in cart.cart_items(snapshot.state)],
        updated_at=datetime.fromtimestamp(snapshot.touched_at, tz=timezone.utc),
    )


def read_cart(services: Services, owner_id: str) -> CartResponse:
    snapshot = _retrying(services, lambda: services.sessions.get(owner_id), CART_READ)
    return _to_response(owner_id, snapshot)


def mutate_cart(services: Services, principal: PrincipalContext, owner_id: str, mutator: Callable) -> CartResponse:
    snapshot = _retrying(services, lambda: services.sessions.upsert(owner_id, mutator), CART_WRITE)
    record_session_mutation(CART_WRITE)
    logger.info(
        f"Cart updated for {owner_id}",
        extra={"principal_id": principal.principal_id, "owner_id": owner_id, "action": "cart_write"},
    )
    return _to_response(owner_id, snapshot)


def clear_cart(services: Services, principal: PrincipalContext, owner_id: str) -> None:
    _retrying(services, lambda: services.sessions.clear(owner_id), CART_CLEAR)
    record_session_mutation(CART_CLEAR)
    logger.info(
        f"Cart cleared for {owner_id}",
        extra={"principal_id": principal.principal_id, "owner_id": owner_id, "action": "cart_clear"},
    )


# ---------------------------------------------------------------------------
# Own cart
# ---------------------------------------------------------------------------

@router.get("/cart", response_model=CartResponse)
def get_own_cart(
    principal: PrincipalContext = Depends(require_principal),
    services: Services = Depends(get_services),
):
    """Return the caller's cart (empty if nothing was added yet)"""
    return read_cart(services, principal.principal_id)


@router.post("/cart", response_model=CartResponse)
def add_to_own_cart(
    line: CartItemCreate,
    principal: PrincipalContext = Depends(require_principal),
    services: Services = Depends(get_services),
):
    """Add an item to the caller's cart; quantities of an existing item add up"""
    return mutate_cart(services, principal, principal.principal_id, cart.add_item(line.item, line.qty))


@router.put("/cart/items/{item}", response_model=CartResponse)
def set_own_quantity(
    item: str,
    update: QuantityUpdate,
    principal: PrincipalContext = Depends(require_principal),
    services: Services = Depends(get_services),
):
    """Set an item's quantity in the caller's cart (0 removes it)"""
    return mutate_cart(services, principal, principal.principal_id, cart.set_quantity(item, update.qty))


@router.delete("/cart/items/{item}", response_model=CartResponse)
def remove_from_own_cart(
    item: str,
    principal: PrincipalContext = Depends(require_principal),
    services: Services = Depends(get_services),
):
    """Remove an item from the caller's cart"""
    return mutate_cart(services, principal, principal.principal_id, cart.remove_item(item))


@router.delete("/cart", status_code=status.HTTP_204_NO_CONTENT)
def clear_own_cart(
    principal: PrincipalContext = Depends(require_principal),
    services: Services = Depends(get_services),
):
    """Empty the caller's cart"""
    clear_cart(services, principal, principal.principal_id)
    return None


# ---------------------------------------------------------------------------
# Any principal's cart (policy-gated)
# ---------------------------------------------------------------------------

@router.get("/carts/{owner_id}", response_model=CartResponse)
def get_cart(
    owner_id: str,
    principal: PrincipalContext = Depends(require_access(CART_READ)),
    services: Services = Depends(get_services),
):
    """Return ``owner_id``'s cart (owner, or a role granted cart:read)"""
    return read_cart(services, owner_id)


@router.post("/carts/{owner_id}", response_model=CartResponse)
def add_to_cart(
    owner_id: str,
    line: CartItemCreate,
    principal: PrincipalContext = Depends(require_access(CART_WRITE)),
    services: Services = Depends(get_services),
):
    return mutate_cart(services, principal, owner_id, cart.add_item(line.item, line.qty))


@router.put("/carts/{owner_id}/items/{item}", response_model=CartResponse)
def set_quantity(
    owner_id: str,
    item: str,
    update: QuantityUpdate,
    principal: PrincipalContext = Depends(require_access(CART_WRITE)),
    services: Services = Depends(get_services),
):
    return mutate_cart(services, principal, owner_id, cart.set_quantity(item, update.qty))


@router.delete("/carts/{owner_id}/items/{item}", response_model=CartResponse)
def remove_from_cart(
    owner_id: str,
    item: str,
    principal: PrincipalContext = Depends(require_access(CART_WRITE)),
    services: Services = Depends(get_services),
):
    return mutate_cart(services, principal, owner_id, cart.remove_item(item))


@router.delete("/carts/{owner_id}", status_code=status.HTTP_204_NO_CONTENT)
def clear_cart_of(
    owner_id: str,
    principal: PrincipalContext = Depends(require_access(CART_CLEAR)),
    services: Services = Depends(get_services),
):
    clear_cart(services, principal, owner_id)
    return None
