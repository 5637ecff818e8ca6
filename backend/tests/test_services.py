"""Tests for service wiring and the periodic sweep"""
import pytest
from sqlalchemy.orm import Session

from tokencart.config import Settings
from tokencart.errors import AuthError, AuthFailure
from tokencart.database import SessionLocal
from tokencart.services import build_services
from tokencart.utils import cart
from tokencart.utils.revocation import InMemoryRevocationList, SqlRevocationList
from tokencart.utils.session_store import InMemorySessionStore, SqlSessionStore


@pytest.fixture(params=["memory", "database"])
def backend(request) -> str:
    return request.param


def _settings(backend: str, **overrides) -> Settings:
    return Settings(
        STORE_BACKEND=backend,
        JWT_ALGORITHM="HS256",
        JWT_SECRET_KEY="sweep-test-secret",
        SESSION_TTL_SECONDS=600,
        **overrides,
    )


def test_backend_selection(db: Session):
    memory = build_services(_settings("memory"), SessionLocal)
    assert isinstance(memory.sessions, InMemorySessionStore)
    assert isinstance(memory.tokens._revocations, InMemoryRevocationList)

    database = build_services(_settings("database"), SessionLocal)
    assert isinstance(database.sessions, SqlSessionStore)
    assert isinstance(database.tokens._revocations, SqlRevocationList)


def test_unknown_backend_rejected():
    with pytest.raises(ValueError):
        Settings(STORE_BACKEND="redis")


def test_sweep_expires_idle_sessions_and_prunes_revocations(db: Session, backend: str, clock):
    services = build_services(_settings(backend), SessionLocal, clock=clock)

    services.sessions.upsert("idle", cart.add_item("A", 1))
    short = services.tokens.issue("idle", ttl=60)
    services.tokens.revoke(short.token)

    clock.advance(601)
    services.sessions.upsert("active", cart.add_item("B", 1))
    services.sweep()

    assert services.sessions.get("idle") is None
    assert services.sessions.get("active") is not None
    assert services.tokens.prune_revocations() == 0


def test_database_backend_revocation_survives_rebuild(db: Session, clock):
    first = build_services(_settings("database"), SessionLocal, clock=clock)
    issued = first.tokens.issue("u1")
    first.tokens.revoke(issued.token)

    second = build_services(_settings("database"), SessionLocal, clock=clock)
    with pytest.raises(AuthError) as exc_info:
        second.tokens.verify(issued.token)
    assert exc_info.value.reason == AuthFailure.REVOKED


def test_database_backend_session_survives_rebuild(db: Session, clock):
    first = build_services(_settings("database"), SessionLocal, clock=clock)
    first.sessions.upsert("u1", cart.add_item("A", 2))

    second = build_services(_settings("database"), SessionLocal, clock=clock)
    assert second.sessions.get("u1").state == {"items": [{"item": "A", "qty": 2}]}


def test_refresh_is_single_use_on_every_backend(db: Session, backend: str, clock):
    services = build_services(_settings(backend), SessionLocal, clock=clock)
    old = services.tokens.issue("u1")
    services.tokens.refresh(old.token)

    with pytest.raises(AuthError) as exc_info:
        services.tokens.refresh(old.token)
    assert exc_info.value.reason == AuthFailure.REVOKED


def test_sql_revocation_add_reports_first_claim(db: Session):
    revocations = SqlRevocationList(SessionLocal)
    assert revocations.add("jti-1", 1_700_000_000) is True
    assert revocations.add("jti-1", 1_700_000_000) is False
    assert revocations.contains("jti-1")
