"""
tests/conftest.py -- Shared test fixtures for TaskTrack tests.

This module provides:
  - _make_test_stores(): creates isolated in-memory DBs for auth + todo
  - _patch_lifespan(): wires test stores into app.state through the real
    init_app_state(), bypassing only the file-backed store construction
  - credential_store / todo_store / issuer: unit-test building blocks
  - api_client: TestClient against the real app with fresh stores
  - register_user: registers an account and returns its session tokens

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the API fixtures because TestClient runs sync route handlers in a thread
pool. Plain :memory: DBs are per-connection and would present a blank schema
to each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process; a uuid keeps tests apart.

Environment variables must be set before any project import: get_settings()
is read once at import time by auth/tokens.py and api/limiter.py.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost", "127.0.0.1"]')
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("SWEEP_INTERVAL_SECONDS", "0")

import pytest
from fastapi.testclient import TestClient

from api.main import app, init_app_state
from auth.issuer import CredentialIssuer
from auth.store import CredentialStore
from todo.store import TodoStore

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[CredentialStore, TodoStore]:
    """Create isolated named shared-memory SQLite stores.

    Args:
        db_suffix: Appended to the DB names so tests never share state.
    """
    auth_url = f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true"
    todo_url = f"sqlite:///file:test_todo_{db_suffix}?mode=memory&cache=shared&uri=true"
    return CredentialStore(db_url=auth_url), TodoStore(db_url=todo_url)


def _patch_lifespan(credential_store: CredentialStore, todo_store: TodoStore):
    """Return an async context manager that replaces the real lifespan.

    No sweep task is started; SWEEP_INTERVAL_SECONDS=0 disables it anyway.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_app_state(app, credential_store, todo_store)
        app.state.sweep_task = None
        yield
        app.state.cache.close()

    return test_lifespan


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def credential_store() -> Generator[CredentialStore, None, None]:
    store = CredentialStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def todo_store() -> Generator[TodoStore, None, None]:
    store = TodoStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def issuer(credential_store: CredentialStore) -> CredentialIssuer:
    return CredentialIssuer(credential_store)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _serve(raise_server_exceptions: bool) -> Generator[TestClient, None, None]:
    credential_store, todo_store = _make_test_stores(uuid.uuid4().hex)
    app.router.lifespan_context = _patch_lifespan(credential_store, todo_store)

    with TestClient(app, raise_server_exceptions=raise_server_exceptions) as client:
        yield client

    todo_store.close()
    credential_store.close()


@pytest.fixture
def api_client() -> Generator[TestClient, None, None]:
    """Yield a TestClient on the real app, backed by fresh in-memory stores.

    The client keeps a cookie jar, so after register/login it is a
    cookie-session client until its cookies are cleared.
    """
    yield from _serve(raise_server_exceptions=True)


@pytest.fixture
def served_api_client() -> Generator[TestClient, None, None]:
    """Like api_client, but unhandled errors come back as 500 responses
    rendered by the app instead of being re-raised into the test.
    """
    yield from _serve(raise_server_exceptions=False)


@pytest.fixture
def register_user(api_client: TestClient) -> Callable[..., dict]:
    """Return register(username, password="secret123", keep_cookies=False) -> response JSON.

    Cookies are cleared by default so each test chooses its credential
    explicitly: a cookie-holding client always authenticates by cookie first.
    """

    def register(username: str, password: str = "secret123", keep_cookies: bool = False) -> dict:
        resp = api_client.post("/api/users/register", json={"username": username, "password": password})
        assert resp.status_code == 200, f"Registration of {username!r} failed: {resp.status_code} {resp.text}"
        if not keep_cookies:
            api_client.cookies.clear()
        return resp.json()

    return register
