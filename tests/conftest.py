"""
tests/conftest.py -- Shared test fixtures for authgate.

This module provides:
  - store / sessions / session / controller: unit-level fixtures around an
    in-memory UserStore and a fresh MemorySessionStore
  - _make_test_store(): isolated named shared-memory DB for integration tests
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - client: TestClient over the real FastAPI app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the TestClient because it runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

DEBUG and BCRYPT_ROUNDS must be set before any auth module import:
get_settings() is cached at first call, auth modules read it at import time,
and DEBUG lets it auto-generate SECRET_KEY instead of raising.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.flows import AuthController
from auth.session import MemorySessionStore, SessionCell
from auth.store import UserStore

# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def sessions() -> MemorySessionStore:
    return MemorySessionStore(expire_seconds=3600)


@pytest.fixture
def session(sessions: MemorySessionStore) -> SessionCell:
    """An anonymous request's view of the session store."""
    return SessionCell(sessions)


@pytest.fixture
def controller(store: UserStore) -> AuthController:
    return AuthController(store)


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so tests don't share state.
    """
    return UserStore(db_url=f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(user_store: UserStore, sessions: MemorySessionStore):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test state rather than the production database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.sessions = sessions
        app.state.auth = AuthController(user_store)
        yield

    return test_lifespan


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """Yield a TestClient with its own user store and session store.

    base_url uses localhost so TrustedHostMiddleware accepts the Host header.
    The client keeps cookies between requests, like a browser.
    """
    user_store = _make_test_store(uuid.uuid4().hex)
    sessions = MemorySessionStore(expire_seconds=3600)
    app.router.lifespan_context = _patch_lifespan(user_store, sessions)

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as c:
        yield c

    user_store.close()


@pytest.fixture
def signed_in(client: TestClient) -> TestClient:
    """The client after signing up as alice/pw1 (roles both False)."""
    resp = client.post(
        "/api/v1/signup",
        json={"username": "alice", "email": "a@x.com", "password": "pw1", "password_confirmation": "pw1"},
    )
    assert resp.status_code == 200, resp.text
    return client
