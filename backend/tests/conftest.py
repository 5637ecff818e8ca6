"""Pytest configuration and fixtures"""
import os

# Must be set before tokencart is imported: settings, engine and limiter are module-level
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("JWT_ALGORITHM", "RS256")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SESSION_SWEEP_INTERVAL_SECONDS"] = "0"
os.environ["STORE_RETRY_BACKOFF_SECONDS"] = "0.01"

from typing import Callable, Dict, Generator  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

import tokencart.models  # noqa: E402,F401
from tokencart.database import Base, SessionLocal, engine, get_db  # noqa: E402
from tokencart.main import app  # noqa: E402
from tokencart.models.principal import Principal  # noqa: E402
from tokencart.services import Services  # noqa: E402


class FakeClock:
    """Settable clock for deterministic expiry tests"""

    def __init__(self, now: float = 1_700_000_000):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a fresh database for each test"""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db: Session) -> Generator[TestClient, None, None]:
    """Create test client with database session override"""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def services(client: TestClient) -> Services:
    """The service container built by the app lifespan"""
    return client.app.state.services


@pytest.fixture
def register(client: TestClient) -> Callable[..., dict]:
    """Register a principal and return the response body"""

    def _register(identifier: str, secret: str = "pw123", **extra) -> dict:
        response = client.post("/auth/register", json={"identifier": identifier, "secret": secret, **extra})
        assert response.status_code == 201, response.text
        return response.json()

    return _register


@pytest.fixture
def login(client: TestClient) -> Callable[..., str]:
    """Log a principal in and return its bearer token"""

    def _login(identifier: str, secret: str = "pw123") -> str:
        response = client.post("/auth/login", json={"identifier": identifier, "secret": secret})
        assert response.status_code == 200, response.text
        return response.json()["token"]

    return _login


@pytest.fixture
def auth_headers(register, login) -> Callable[..., Dict[str, str]]:
    """Register (if needed) and log in; return Authorization headers"""
    registered = set()

    def _headers(identifier: str, secret: str = "pw123") -> Dict[str, str]:
        if identifier not in registered:
            register(identifier, secret)
            registered.add(identifier)
        return {"Authorization": f"Bearer {login(identifier, secret)}"}

    return _headers


@pytest.fixture
def grant_role(db: Session) -> Callable[[str, str], None]:
    """Grant a role out-of-band, the way an operator would in the database"""

    def _grant(identifier: str, role: str) -> None:
        principal = db.query(Principal).filter(Principal.principal_id == identifier).one()
        principal.role = role
        db.commit()

    return _grant
