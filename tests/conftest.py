"""
tests/conftest.py -- Shared test fixtures for CodeCoach unit and integration tests.

This module provides:
  - memory_db_url(): a fresh named shared-memory SQLite URL
  - FakeProvider: an in-process OAuthProvider with scripted profiles/failures
  - FakeClock: a settable UTC clock for token-expiry tests
  - store / identity: function-scoped DirectoryStore and IdentityService
  - api_client: TestClient with a patched lifespan wiring test doubles

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

DEBUG and BCRYPT_ROUNDS must be set before any auth/core import: DEBUG
silences the "GitHub OAuth not configured" warning, and cost 4 keeps bcrypt
fast enough for a test suite.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Optional

# CRITICAL: set before any auth/core import so get_settings() sees them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.github import ExternalProfile
from auth.oauth import OAuthStateManager
from auth.service import IdentityService
from core.errors import ExternalProviderError
from directory.store import DirectoryStore

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def memory_db_url(prefix: str = "test") -> str:
    """Return a unique named shared-memory SQLite URL."""
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


class FakeClock:
    """Callable UTC clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeProvider:
    """OAuthProvider double. Set .profile, or .fail_exchange / .fail_profile."""

    def __init__(self, profile: Optional[ExternalProfile] = None) -> None:
        self.profile = profile or ExternalProfile(
            external_id="4242",
            login="octo",
            name="Octo Cat",
            email="octo@example.com",
            avatar_url="https://avatars.example.com/4242",
            location="Lisbon",
        )
        self.fail_exchange = False
        self.fail_profile = False
        self.states: list[str] = []
        self.exchanged: list[str] = []

    def authorize_url(self, state: str) -> str:
        self.states.append(state)
        return f"https://github.example.com/authorize?state={state}"

    def exchange_code(self, code: str) -> str:
        self.exchanged.append(code)
        if self.fail_exchange:
            raise ExternalProviderError("could not exchange oauth code for access token")
        return f"gh-token-{code}"

    def fetch_profile(self, access_token: str) -> ExternalProfile:
        if self.fail_profile:
            raise ExternalProviderError()
        return self.profile


# ---------------------------------------------------------------------------
# Function-scoped fixtures -- unit and use-case tests
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[DirectoryStore, None, None]:
    s = DirectoryStore(db_url=memory_db_url("store"))
    yield s
    s.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def identity(store: DirectoryStore, provider: FakeProvider, clock: FakeClock) -> IdentityService:
    return IdentityService(
        store,
        OAuthStateManager(ttl_seconds=600),
        provider,
        token_ttl_seconds=3600,
        page_size=50,
        clock=clock,
    )


# ---------------------------------------------------------------------------
# Module-scoped fixture -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


def _patch_lifespan(store: DirectoryStore, identity: IdentityService):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and service into app.state so TestClient routes see
    an isolated in-memory DB and the fake OAuth provider, never GitHub.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        app.state.identity = identity
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, IdentityService, FakeProvider], None, None]:
    """Yield (client, identity, provider) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers, dependencies and exception handlers.
    """
    api_store = DirectoryStore(db_url=memory_db_url("api"))
    fake = FakeProvider()
    service = IdentityService(api_store, OAuthStateManager(ttl_seconds=600), fake, page_size=2)

    app.router.lifespan_context = _patch_lifespan(api_store, service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, service, fake

    api_store.close()
