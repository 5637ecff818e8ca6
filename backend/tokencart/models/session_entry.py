"""SessionEntry model - durable per-principal state for the database store backend"""
from sqlalchemy import JSON, Column, DateTime, Integer, String

from tokencart.database import Base


class SessionEntry(Base):
    """One mutable state blob (e.g. a cart) per principal."""

    __tablename__ = "session_entries"

    id = Column(Integer, primary_key=True)
    principal_id = Column(String(64), unique=True, nullable=False, index=True)
    state = Column(JSON, nullable=False)
    touched_at = Column(DateTime, nullable=False, index=True)  # last write, drives the expiry sweep
