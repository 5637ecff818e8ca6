"""Pydantic schemas for request/response validation"""
from tokencart.schemas.cart import CartItemCreate, CartLine, CartResponse, QuantityUpdate
from tokencart.schemas.principal import PasswordChange, PrincipalCreate, PrincipalResponse
from tokencart.schemas.token import LoginRequest, RevokeResponse, TokenResponse

__all__ = [
    "CartItemCreate",
    "CartLine",
    "CartResponse",
    "QuantityUpdate",
    "PasswordChange",
    "PrincipalCreate",
    "PrincipalResponse",
    "LoginRequest",
    "RevokeResponse",
    "TokenResponse",
]
