"""Pytest configuration and fixtures."""

import os

# Settings are read when app modules are imported; pin them first.
os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTH_SECRET"] = "test-secret"
os.environ["USER_STORE"] = "sql"
os.environ["PASSWORD_HASH_ITERATIONS"] = "100000"

from datetime import datetime, timedelta  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.database import Base, get_db  # noqa: E402
from app.models.user import User  # noqa: E402, F401
from app.services.auth import CredentialService  # noqa: E402
from app.services.passwords import PasswordHasher  # noqa: E402
from app.stores.json_file import JsonFileUserStore  # noqa: E402
from app.stores.sql import SqlUserStore  # noqa: E402

TEST_ITERATIONS = 100_000


class FakeClock:
    """Settable naive-UTC clock."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(name="db_session")
def db_session_fixture():
    """Create an in-memory SQLite database for tests."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    testing_session_local = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(name="hasher", scope="session")
def hasher_fixture() -> PasswordHasher:
    return PasswordHasher(iterations=TEST_ITERATIONS)


@pytest.fixture(name="store", params=["sql", "json"])
def store_fixture(request, db_session: Session, tmp_path):
    """Each store-contract test runs against both backends."""
    if request.param == "sql":
        return SqlUserStore(db_session)
    return JsonFileUserStore(tmp_path / "users.json")


@pytest.fixture(name="clock")
def clock_fixture() -> FakeClock:
    return FakeClock()


@pytest.fixture(name="service")
def service_fixture(store, hasher: PasswordHasher, clock: FakeClock) -> CredentialService:
    return CredentialService(store, hasher, clock=clock)


@pytest.fixture(name="client")
def client_fixture(db_session: Session):
    """Create a test client with overridden DB dependency and disabled rate limiting."""
    from app.rate_limit import limiter
    from main import app

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    limiter.enabled = False
    with TestClient(app) as c:
        yield c
    limiter.enabled = True
    app.dependency_overrides.clear()


@pytest.fixture(name="test_user")
def test_user_fixture(db_session: Session, hasher: PasswordHasher):
    """Create a test user and return its data with a session token."""
    from main import app

    service = CredentialService(SqlUserStore(db_session), hasher)
    user = service.register("Test User", "test@example.com", "password123")
    token = app.state.session_issuer.issue(user)

    return {
        "user_id": user.id,
        "email": user.email,
        "name": user.name,
        "token": token,
    }
