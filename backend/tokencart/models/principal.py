"""Principal model - an identity that can log in and own session state"""
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from tokencart.database import Base


class Principal(Base):
    """A registered identity.

    Only the bcrypt hash and salt of the secret are stored. Rows are created on
    registration and mutated only by credential rotation; ``role`` is granted
    out-of-band (directly in the database) and read-only to the service.
    """

    __tablename__ = "principals"

    id = Column(Integer, primary_key=True, index=True)
    principal_id = Column(String(64), unique=True, nullable=False, index=True)  # login identifier
    display_name = Column(String(255), nullable=True)
    password_hash = Column(String(128), nullable=False)
    password_salt = Column(String(64), nullable=False)
    role = Column(String(20), nullable=False, default="customer")  # customer|support|admin
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    password_changed_at = Column(DateTime, nullable=True)
