"""Database models"""
from tokencart.models.principal import Principal
from tokencart.models.revoked_token import RevokedToken
from tokencart.models.session_entry import SessionEntry

__all__ = ["Principal", "RevokedToken", "SessionEntry"]
