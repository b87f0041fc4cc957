"""
Test configuration and fixtures.

Provides:
- A fresh file-backed SQLite database per test (shared by worker threads)
- User factory that credits the signup grant through the ledger
- JWT bearer headers for authenticated tests
- HTTPX AsyncClient and Starlette TestClient wired to the test database
"""
import json
import os
import uuid
from typing import AsyncGenerator, Generator

os.environ["TESTING"] = "1"
os.environ["ENV"] = "dev"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["DEV_SECRET"] = "test-dev-secret"
os.environ["DB_AUTO_MIGRATE"] = "False"

import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session, sessionmaker

from insureconnect.core.deps import get_session_factory
from insureconnect.core.security import create_session_token
from insureconnect.core.websocket import ConnectionRegistry
from insureconnect.db.base import Base
from insureconnect.db.enums import Role
from insureconnect.db.models import User
from insureconnect.db.session import build_engine
from insureconnect.main import app
from insureconnect.services import user_service


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def engine(tmp_path):
    """
    Scratch database for one test.

    A file (not :memory:) so that threads in the concurrency tests each get
    their own connection to the same data.
    """
    engine = build_engine(f"sqlite:///{tmp_path / 'insureconnect-test.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture(scope="function")
def db(session_factory) -> Generator[Session, None, None]:
    """
    Session for service-level tests.

    SQLite transactions hold the write lock from BEGIN, so tests that also
    drive other threads or the app should use short `session_factory()`
    blocks instead.
    """
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(scope="function")
def make_user(session_factory):
    """Create users in their own committed session. Returns a detached User."""

    def _make(
        role: Role = Role.CUSTOMER,
        tokens: int = 100,
        name: str = "Test User",
        email: str | None = None,
    ) -> User:
        with session_factory() as session:
            return user_service.create_user(
                session,
                email=email or f"user-{uuid.uuid4().hex[:8]}@insureconnect.io",
                name=name,
                role=role,
                grant_tokens=tokens,
            )

    return _make


@pytest.fixture(scope="function")
def admin(make_user) -> User:
    return make_user(role=Role.ADMIN, tokens=0, name="Admin")


# =============================================================================
# Auth Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def auth_headers():
    """Bearer header for a user's current token_version."""

    def _headers(user: User) -> dict[str, str]:
        token = create_session_token(user.id, user.role, user.token_version)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture(scope="function")
def ws_url():
    def _url(user: User) -> str:
        return f"/ws?token={create_session_token(user.id, user.role, user.token_version)}"

    return _url


# =============================================================================
# Real-time Fixtures
# =============================================================================

class FakeConnection:
    """Records frames the registry sends; stands in for a Starlette WebSocket."""

    def __init__(self, fail: bool = False) -> None:
        self.frames: list[dict] = []
        self.closed: tuple[int, str | None] | None = None
        self.fail = fail

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise RuntimeError("connection reset")
        self.frames.append(json.loads(data))

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed = (code, reason)

    def events(self, name: str | None = None) -> list[dict]:
        return [f for f in self.frames if name is None or f["event"] == name]


@pytest.fixture(scope="function")
def make_connection():
    return FakeConnection


@pytest.fixture(scope="function")
def registry() -> ConnectionRegistry:
    """Fresh registry installed on the app for this test."""
    registry = ConnectionRegistry()
    app.state.registry = registry
    return registry


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(session_factory, registry) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient bound to the scratch database (no auth headers)."""
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def ws_client(session_factory, registry) -> Generator[TestClient, None, None]:
    """
    TestClient for gateway tests.

    Used as a context manager so HTTP calls and WebSocket sessions share one
    event loop, like a single server process.
    """
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()
