"""
tests/conftest.py -- Shared test fixtures for authgate.

This module provides:
  - FrozenClock: a controllable wall clock injected into codec/service/rotator
  - store / hasher / codec / service / rotator: unit-level fixtures on an
    in-memory UserStore
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
api_client because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread.

The DEBUG env var must be set before any api/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any core/api import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app, wire_services
from auth.passwords import PasswordHasher
from auth.rotation import SessionRotator
from auth.service import CredentialService
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.config import get_settings

TEST_SECRET = "test-secret-key-that-is-long-enough-0123456789"
ACCESS_TTL = timedelta(minutes=15)
REFRESH_TTL = timedelta(days=7)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    return PasswordHasher()


@pytest.fixture
def codec(clock: FrozenClock) -> TokenCodec:
    return TokenCodec(secret=TEST_SECRET, access_ttl=ACCESS_TTL, clock=clock)


@pytest.fixture
def service(store: UserStore, hasher: PasswordHasher, codec: TokenCodec, clock: FrozenClock) -> CredentialService:
    return CredentialService(store, hasher, codec, REFRESH_TTL, clock=clock)


@pytest.fixture
def rotator(store: UserStore, codec: TokenCodec, clock: FrozenClock) -> SessionRotator:
    return SessionRotator(store, codec, REFRESH_TTL, clock=clock)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, clock: FrozenClock):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and the test clock into app.state so TestClient
    routes see an isolated DB and expiry can be driven with clock.advance().
    The purge_task is a long-sleeping coroutine so shutdown can cancel a real
    asyncio.Task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_services(app, get_settings(), user_store, clock=clock)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture
def api_client(clock: FrozenClock) -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app backed by a fresh shared-memory DB.

    Function-scoped: every test starts with an empty user table, so tests can
    register the same username without colliding. Services share the `clock`
    fixture, so a test that also requests `clock` can expire tokens.
    """
    db_url = f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    user_store = UserStore(db_url)
    app.router.lifespan_context = _patch_lifespan(user_store, clock)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    user_store.close()
