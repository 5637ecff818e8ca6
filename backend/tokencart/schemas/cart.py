"""Cart schemas"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class CartLine(BaseModel):
    item: str
    qty: int


class CartItemCreate(BaseModel):
    """Add ``qty`` of ``item`` to a cart"""

    item: str = Field(..., min_length=1, max_length=255)
    qty: int = Field(1, ge=1, le=10_000)


class QuantityUpdate(BaseModel):
    """Set a line's quantity; 0 removes it"""

    qty: int = Field(..., ge=0, le=10_000)


class CartResponse(BaseModel):
    owner_id: str
    items: List[CartLine]
    updated_at: Optional[datetime] = None
