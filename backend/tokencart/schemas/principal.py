"""Principal schemas"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

IDENTIFIER_PATTERN = r"^[A-Za-z0-9_.@-]+$"


class PrincipalCreate(BaseModel):
    """Registration payload"""

    identifier: str = Field(..., min_length=1, max_length=64, pattern=IDENTIFIER_PATTERN)
    secret: str = Field(..., min_length=1, max_length=1024, description="Never stored, only its hash")
    display_name: Optional[str] = Field(None, max_length=255)


class PrincipalResponse(BaseModel):
    """Principal record as returned to clients (no credential material)"""

    principal_id: str
    display_name: Optional[str]
    role: str
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class PasswordChange(BaseModel):
    current_secret: str = Field(..., min_length=1, max_length=1024)
    new_secret: str = Field(..., min_length=1, max_length=1024)
