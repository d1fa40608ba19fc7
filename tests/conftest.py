"""
tests/conftest.py -- Shared test fixtures for the auth core.

This module provides:
  - FakeClock: a settable clock injected into the codec and engine so expiry
    tests move time instead of sleeping
  - identity_store / token_store / codec / engine: unit-level fixtures over a
    private in-memory SQLite database
  - api_client: TestClient over the real FastAPI app with a patched lifespan,
    yielding (client, admin_token, admin_id)

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
api_client because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread.

Environment must be set before any core/auth/api import: DEBUG lets
get_settings() auto-generate SECRET_KEY, and the rate limit is raised so the
integration tests do not trip it.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set env before any auth/core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.engine import AuthEngine
from auth.models import AccountStatus, Identity, Role, TokenKind
from auth.passwords import hash_password
from auth.store import IdentityStore, RefreshTokenStore, create_store_engine
from auth.tokens import TokenCodec, claims_for
from core.config import get_settings

TEST_SECRET = "test-secret-key-for-the-auth-core-0123456789"


class FakeClock:
    """Callable clock whose current instant only moves when a test says so."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_engine():
    engine = create_store_engine("sqlite:///:memory:")
    yield engine
    engine.dispose()


@pytest.fixture
def identity_store(db_engine) -> IdentityStore:
    return IdentityStore(engine=db_engine)


@pytest.fixture
def token_store(db_engine) -> RefreshTokenStore:
    return RefreshTokenStore(engine=db_engine)


@pytest.fixture
def codec(clock) -> TokenCodec:
    return TokenCodec(TEST_SECRET, clock=clock)


@pytest.fixture
def engine(identity_store, token_store, codec, clock) -> AuthEngine:
    return AuthEngine(
        identity_store,
        token_store,
        codec,
        access_lifetime=timedelta(hours=1),
        refresh_lifetime=timedelta(days=7),
        clock=clock,
    )


@pytest.fixture
def token_secret() -> str:
    return TEST_SECRET


@pytest.fixture
def make_identity(identity_store):
    """Factory fixture: make_identity(email=..., role=..., **flags) -> saved Identity."""

    def factory(**kwargs) -> Identity:
        return _make_identity(identity_store, **kwargs)

    return factory


def _make_identity(
    identity_store: IdentityStore,
    email: str = "user@example.com",
    password: str = "password123",
    role: Role = Role.STANDARD_USER,
    status: AccountStatus = AccountStatus.ACTIVE,
    **flags: bool,
) -> Identity:
    """Persist an identity directly through the store, bypassing registration."""
    return identity_store.save(
        Identity(
            email=email,
            handle=email.split("@")[0],
            hashed_password=hash_password(password),
            first_name="Test",
            last_name="User",
            role=role,
            status=status,
            **flags,
        )
    )


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(identity_store: IdentityStore, token_store: RefreshTokenStore, engine: AuthEngine):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see an
    isolated test DB rather than the configured database. No sweep task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = get_settings()
        app.state.identity_store = identity_store
        app.state.token_store = token_store
        app.state.auth_engine = engine
        app.state.token_codec = engine.codec
        app.state.sweep_task = None
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, admin_token, admin_id) for API integration tests.

    One isolated shared-memory database per test module. The admin identity
    has every capability flag; its access token is minted with the same
    codec the app verifies with.
    """
    db_name = request.module.__name__.replace(".", "_")
    db_engine = create_store_engine(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    identity_store = IdentityStore(engine=db_engine)
    token_store = RefreshTokenStore(engine=db_engine)
    engine = AuthEngine.from_settings(get_settings(), identity_store, token_store)

    admin = _make_identity(
        identity_store,
        email="admin@example.com",
        password="adminpass123",
        role=Role.ADMINISTRATOR,
        can_manage_identities=True,
        can_view_reports=True,
        can_manage_settings=True,
    )
    token = engine.codec.issue(claims_for(admin, TokenKind.ACCESS), timedelta(hours=1))

    app.router.lifespan_context = _patch_lifespan(identity_store, token_store, engine)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, admin.id

    db_engine.dispose()
