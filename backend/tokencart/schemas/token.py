"""Token schemas"""
from datetime import datetime

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    identifier: str = Field(..., min_length=1, max_length=64)
    secret: str = Field(..., min_length=1, max_length=1024)


class TokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_at: datetime
    expires_in: int   # seconds until expiry


class RevokeResponse(BaseModel):
    revoked: bool
