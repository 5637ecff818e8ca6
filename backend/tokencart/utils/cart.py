"""Cart state mutators.

A cart is stored as ``{"items": [{"item": str, "qty": int}, ...]}`` in
insertion order. Each function returns a mutator for
:meth:`SessionStore.upsert`.
"""
from typing import Any, Callable, Dict, List

CartState = Dict[str, Any]


def empty_cart() -> CartState:
    return {"items": []}


def cart_items(state: CartState) -> List[Dict[str, Any]]:
    return [dict(line) for line in state.get("items", [])] if state else []


def add_item(item: str, qty: int) -> Callable[[CartState], CartState]:
    """Add ``qty`` of ``item``; an existing line's quantity is incremented."""
    if qty <= 0:
        raise ValueError("qty must be positive")

    def mutate(state: CartState) -> CartState:
        items = cart_items(state)
        for line in items:
            if line["item"] == item:
                line["qty"] += qty
                break
        else:
            items.append({"item": item, "qty": qty})
        return {**state, "items": items}

    return mutate


def set_quantity(item: str, qty: int) -> Callable[[CartState], CartState]:
    """Set the quantity of ``item``; 0 removes the line."""
    if qty < 0:
        raise ValueError("qty must not be negative")
    if qty == 0:
        return remove_item(item)

    def mutate(state: CartState) -> CartState:
        items = cart_items(state)
        for line in items:
            if line["item"] == item:
                line["qty"] = qty
                break
        else:
            items.append({"item": item, "qty": qty})
        return {**state, "items": items}

    return mutate


def remove_item(item: str) -> Callable[[CartState], CartState]:
    def mutate(state: CartState) -> CartState:
        return {**state, "items": [line for line in cart_items(state) if line["item"] != item]}

    return mutate
