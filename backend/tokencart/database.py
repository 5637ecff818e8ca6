"""Database engine, session factory and declarative base"""
import math
from typing import Any, Dict, Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from tokencart.config import settings

Base = declarative_base()


def timeout_connect_args(url: str, timeout: float) -> Dict[str, Any]:
    """DBAPI connect arguments that bound connects, statements and row-lock waits.

    ``SELECT ... FOR UPDATE`` against a row locked by another process must
    give up after ``timeout`` seconds (and surface as ``OperationalError``)
    rather than block the request.
    """
    parsed = make_url(url)
    backend, driver = parsed.get_backend_name(), parsed.get_driver_name()
    millis = max(1, int(timeout * 1000))
    seconds = max(1, math.ceil(timeout))

    if backend == "sqlite":
        return {"check_same_thread": False, "timeout": timeout}
    if backend == "postgresql":
        if driver == "pg8000":
            return {"timeout": seconds}
        return {
            "connect_timeout": seconds,
            "options": f"-c statement_timeout={millis} -c lock_timeout={millis}",
        }
    if backend in ("mysql", "mariadb"):
        return {
            "connect_timeout": seconds,
            "read_timeout": seconds,
            "write_timeout": seconds,
            "init_command": f"SET SESSION innodb_lock_wait_timeout={seconds}",
        }
    return {}


def build_engine(url: str, timeout: float) -> Engine:
    """Create an engine whose connection, statement and lock waits are bounded by ``timeout`` seconds."""
    connect_args = timeout_connect_args(url, timeout)
    if url.startswith("sqlite"):
        return create_engine(url, connect_args=connect_args)

    return create_engine(
        url,
        connect_args=connect_args,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_timeout=timeout,
        pool_recycle=settings.DATABASE_POOL_RECYCLE,
        pool_pre_ping=True,
    )


engine = build_engine(settings.DATABASE_URL, settings.STORE_TIMEOUT_SECONDS)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a request-scoped database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
