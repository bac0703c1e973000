"""Pytest fixtures for async FastAPI testing.

Loads `.env.test` before any `authgate` module reads settings, initializes a
clean test database, and provides an `AsyncClient` for integration tests.
Rows and shared-store keys are wiped after every test so rate-limit history
never leaks from one test into the next.
"""
import os
import pathlib
import uuid
from datetime import timedelta

import pytest
from dotenv import load_dotenv

ROOT = pathlib.Path(__file__).resolve().parent.parent
_dotenv_path = ROOT / ".env.test"
if _dotenv_path.exists():
    load_dotenv(dotenv_path=str(_dotenv_path), override=True)

# Fallbacks when .env.test is missing
os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///./authgate_test.db")
os.environ.setdefault("JWT_SECRET", "test-secret-not-for-production")
os.environ.setdefault("KV_BACKEND", "memory")
os.environ.setdefault("RATE_LIMIT_ENABLED", "True")

PASSWORD = "StrongPassw0rd!"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="session")
def prepare_database():
    """Create clean schema for the test session."""
    from authgate.core.database import engine, Base

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    yield

    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clean_state(prepare_database):
    """Empty every table and the shared store after each test."""
    yield
    from authgate.cache.cache_service import kv_store
    from authgate.core.database import Base, SessionLocal

    db = SessionLocal()
    try:
        for table in reversed(Base.metadata.sorted_tables):
            db.execute(table.delete())
        db.commit()
    finally:
        db.close()
    kv_store.clear()


@pytest.fixture
def db_session(prepare_database):
    """Yield a SQLAlchemy session for direct DB access in tests."""
    from authgate.core.database import SessionLocal

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class FrozenClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock(monkeypatch):
    """Freeze ``helpers.utcnow`` so tests can move time forward explicitly."""
    from authgate.utils import helpers

    frozen = FrozenClock(helpers.utcnow())
    monkeypatch.setattr(helpers, "utcnow", frozen)
    return frozen


@pytest.fixture
def make_user(db_session):
    """Factory for users created straight in the database."""
    from authgate.core.security import hash_password
    from authgate.models.user import User

    def _make(password=PASSWORD, role="user", username=None, email=None, **fields):
        suffix = uuid.uuid4().hex[:8]
        user = User(
            email=email or f"user_{suffix}@example.com",
            username=username or f"user_{suffix}",
            password_hash=hash_password(password) if password else None,
            role=role,
            **fields,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
async def async_client(prepare_database):
    """Provide an httpx AsyncClient configured with the FastAPI app."""
    from httpx import ASGITransport, AsyncClient
    from authgate.main import create_app

    app = create_app()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        yield client


async def login(client, email, password=PASSWORD, ip=None, **extra):
    """Sign in through the API and return the response."""
    headers = {"X-Forwarded-For": ip} if ip else {}
    return await client.post(
        "/auth/login",
        json={"email": email, "password": password, **extra},
        headers=headers,
    )


def auth_headers(client, body, csrf=True):
    """Bearer header for a sign-in response, plus the echoed CSRF cookie."""
    headers = {"Authorization": f"Bearer {body['data']['tokens']['access_token']}"}
    if csrf:
        headers["X-CSRF-Token"] = client.cookies.get("csrf-token")
    return headers
