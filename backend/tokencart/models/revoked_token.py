"""RevokedToken model - jti blocklist for JWT revocation"""
from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String

from tokencart.database import Base


class RevokedToken(Base):
    """Stores revoked JWT token IDs (jti claims).

    expires_at mirrors the token's original exp so rows can be pruned once the
    token would have expired anyway.
    """

    __tablename__ = "revoked_tokens"

    id = Column(Integer, primary_key=True, index=True)
    jti = Column(String(64), unique=True, nullable=False, index=True)
    revoked_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
