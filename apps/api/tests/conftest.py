"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database, schema rebuilt for each test
- JWT token minting for authenticated tests
- HTTPX AsyncClient with proper headers
"""
import os
import uuid
from dataclasses import dataclass
from typing import AsyncGenerator, Generator

from cryptography.fernet import Fernet

# Settings are read at import time, so the environment must be set first
os.environ["TESTING"] = "1"
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ.setdefault("FERNET_KEY", Fernet.generate_key().decode())
os.environ.setdefault("INTERNAL_SECRET", "test-internal-secret")
os.environ.setdefault("ZOOM_WEBHOOK_SECRET", "test-zoom-secret")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from app.main import app
from app.core.deps import COOKIE_NAME, get_db
from app.core.security import create_session_token
from app.db.base import Base
from app.db.enums import Role
from app.db.models import User
from app.db.session import SessionLocal, engine


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Fresh schema per test.

    App code commits freely; dropping the tables afterwards undoes it all.
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


def make_user(db: Session, role: Role = Role.SALES_USER, **kwargs) -> User:
    user = User(
        id=uuid.uuid4(),
        email=kwargs.pop("email", f"test-{uuid.uuid4().hex[:8]}@test.com"),
        display_name=kwargs.pop("display_name", "Test User"),
        role=role.value,
        **kwargs,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture(scope="function")
def test_user(db: Session) -> User:
    """Create a sales user."""
    return make_user(db, display_name="Sam Seller")


@pytest.fixture(scope="function")
def test_admin(db: Session) -> User:
    """Create an admin user."""
    return make_user(db, role=Role.ADMIN, display_name="Ada Admin")


# =============================================================================
# Auth Fixtures
# =============================================================================

@dataclass
class TestAuth:
    """Test authentication context."""
    user: User
    token: str
    cookie_name: str = COOKIE_NAME


def mint_auth(user: User) -> TestAuth:
    token = create_session_token(
        user_id=user.id,
        role=user.role,
        token_version=user.token_version,
    )
    return TestAuth(user=user, token=token)


@pytest.fixture(scope="function")
def test_auth(test_user: User) -> TestAuth:
    """Create JWT token for the sales user."""
    return mint_auth(test_user)


@pytest.fixture(scope="function")
def admin_auth(test_admin: User) -> TestAuth:
    """Create JWT token for the admin user."""
    return mint_auth(test_admin)


# =============================================================================
# Client Fixtures
# =============================================================================

def _override_db(db: Session) -> None:
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """
    Create unauthenticated AsyncClient for testing public endpoints.
    """
    _override_db(db)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def authed_client(
    db: Session,
    test_auth: TestAuth
) -> AsyncGenerator[AsyncClient, None]:
    """
    Create authenticated AsyncClient with JWT cookie and CSRF header.
    """
    _override_db(db)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        cookies={test_auth.cookie_name: test_auth.token},
        headers={"X-Requested-With": "XMLHttpRequest"},  # CSRF header
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def admin_client(
    db: Session,
    admin_auth: TestAuth
) -> AsyncGenerator[AsyncClient, None]:
    """Authenticated AsyncClient for the admin user."""
    _override_db(db)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        cookies={admin_auth.cookie_name: admin_auth.token},
        headers={"X-Requested-With": "XMLHttpRequest"},
    ) as c:
        yield c

    app.dependency_overrides.clear()


# =============================================================================
# Outbound Network Fixtures
# =============================================================================

@pytest.fixture
def public_dns(monkeypatch):
    """Resolve every webhook host to a public address without touching DNS."""
    import ipaddress

    from app.core import url_validation

    monkeypatch.setattr(
        url_validation,
        "_resolve_host",
        lambda host, port: {ipaddress.ip_address("52.1.2.3")},
    )


# =============================================================================
# AI Fixtures
# =============================================================================

from app.services.ai_provider import AIProvider, ChatResponse


class FakeProvider(AIProvider):
    """Returns canned content (or raises) instead of calling a model API."""

    def __init__(self, name: str, content: str | None = None, error: Exception | None = None):
        self.name = name
        self.content = content
        self.error = error
        self.calls = 0

    async def chat(self, messages, model=None, temperature=0.3, max_tokens=4000, json_mode=False):
        self.calls += 1
        if self.error:
            raise self.error
        return ChatResponse(
            content=self.content or "",
            prompt_tokens=10,
            completion_tokens=20,
            total_tokens=30,
            model=f"{self.name}-test",
            provider=self.name,
        )


@pytest.fixture
def fake_provider():
    """Factory for FakeProvider instances."""
    return FakeProvider
