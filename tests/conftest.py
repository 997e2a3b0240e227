"""
tests/conftest.py -- Shared test fixtures for SessionGate.

This module provides:
  - db_url: a file-backed SQLite URL under tmp_path (one fresh DB per test)
  - users / sessions / hasher / service: the auth stack wired to that DB
  - FakeClock: a settable clock for crossing session expiry exactly
  - client: TestClient over the real FastAPI app with a patched lifespan

Design: file-backed SQLite (not :memory:) because TestClient runs sync route
handlers in a thread pool and the concurrency tests spawn their own threads.
A plain :memory: DB is per-connection and would present a blank schema to
each worker thread.

DEBUG and BCRYPT_ROUNDS must be set before any auth/core import so
get_settings() auto-generates SECRET_KEY and hashing stays fast.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any auth/core import (get_settings() is cached).
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.sessions import SessionStore
from auth.store import UserStore


class FakeClock:
    """Callable clock returning a settable epoch time."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'auth.db'}"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def users(db_url) -> Generator[UserStore, None, None]:
    store = UserStore(db_url)
    yield store
    store.close()


@pytest.fixture
def sessions(db_url, clock) -> Generator[SessionStore, None, None]:
    store = SessionStore(db_url, ttl=3600, clock=clock)
    yield store
    store.close()


@pytest.fixture
def service(users, sessions, hasher) -> AuthService:
    return AuthService(users, sessions, hasher)


def _patch_lifespan(service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the test stores into app.state so routes hit isolated DBs. The
    purge_task is a long-sleeping coroutine (a real asyncio.Task is required;
    MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = service.users
        app.state.session_store = service.sessions
        app.state.auth_service = service
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture
def client(service) -> Generator[TestClient, None, None]:
    """Yield a TestClient over a fresh, empty database.

    Function-scoped on purpose: the first registration in every test must see
    zero accounts so the bootstrap rule can be asserted.
    """
    app.router.lifespan_context = _patch_lifespan(service)
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


def register(client: TestClient, handle: str, secret: str):
    return client.post("/auth/register", json={"handle": handle, "secret": secret})


def login(client: TestClient, handle: str, secret: str) -> str:
    """Log in and return the raw session token from the Set-Cookie header."""
    resp = client.post("/auth/login", json={"handle": handle, "secret": secret})
    assert resp.status_code == 200, resp.text
    token = resp.cookies.get("session_id")
    assert token
    # Tests pass cookies explicitly per request; keep the shared jar empty so
    # one user's session never leaks into another user's request.
    client.cookies.clear()
    return token
