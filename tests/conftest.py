"""
tests/conftest.py -- Shared test fixtures for the QMS auth API.

This module provides:
  - _patch_lifespan(): wires a test AuthStore into app.state, bypassing real startup
  - api_env: module-scoped TestClient + store + one active user
  - client: the same TestClient with its cookie jar emptied for each test
  - store: a fresh file-backed AuthStore per test for unit tests
  - login: opens a session for a user and returns the cookies a browser would hold
  - set_cookies: parses Set-Cookie headers of a response into a dict

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread.

DEBUG must be set before any auth/core import so get_settings() generates a
SECRET_KEY instead of raising. ALLOWED_HOSTS must include TestClient's
"testserver" host. The signin rate limit is pinned to 10/minute and the
limiter's counters are reset before every test.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "10/minute")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.cookies import build_auth_cookie_set
from auth.csrf import CsrfTokenIssuer
from auth.models import User
from auth.store import AuthStore
from auth.tokens import create_token_pair, hash_password
from core.config import get_settings

TEST_EMAIL = "pm@example.com"
TEST_PASSWORD = "correct-horse-battery"


# ---------------------------------------------------------------------------
# Lifespan patch
# ---------------------------------------------------------------------------


def _patch_lifespan(store: AuthStore):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine so shutdown can .cancel() a
    real asyncio.Task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        settings = get_settings()
        app.state.auth_store = store
        app.state.auth_cookies = build_auth_cookie_set(settings)
        app.state.csrf_issuer = CsrfTokenIssuer(
            settings.derive_key("csrf"), store, max_age_seconds=settings.csrf_token_max_age_seconds
        )
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()
        with suppress(asyncio.CancelledError):
            await app.state.purge_task

    return test_lifespan


@dataclass
class ApiEnv:
    client: TestClient
    store: AuthStore
    user: User


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_env(request) -> Generator[ApiEnv, None, None]:
    """Yield an ApiEnv for integration tests.

    Each test module gets its own named in-memory database so modules do
    not see each other's users or sessions.
    """
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    store = AuthStore(db_url=f"sqlite:///file:test_auth_{suffix}?mode=memory&cache=shared&uri=true")
    uid = store.create_user(
        User(email=TEST_EMAIL, name="Pat Manager", role="Project Manager", hashed_password=hash_password(TEST_PASSWORD))
    )
    user = store.get_by_id(uid)

    app.router.lifespan_context = _patch_lifespan(store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiEnv(client=client, store=store, user=user)

    store.close()


@pytest.fixture
def client(api_env: ApiEnv) -> TestClient:
    """The module's TestClient with an empty cookie jar."""
    api_env.client.cookies.clear()
    return api_env.client


@pytest.fixture
def login(api_env: ApiEnv) -> Callable[..., dict[str, str]]:
    """Open a session directly in the store and return its browser cookies.

    Bypasses POST /signin so tests that are not about signin do not depend
    on it (or on its rate limit).
    """
    names = build_auth_cookie_set(get_settings())

    def _login(user: User | None = None, ttl_seconds: int = 3600) -> dict[str, str]:
        user = user or api_env.user
        session = api_env.store.create_session(user.id, ttl_seconds)
        tokens = create_token_pair(user, session)
        return {
            names.get("access").name: tokens.access_token,
            names.get("refresh").name: tokens.refresh_token,
            names.get("session").name: "true",
        }

    return _login


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store(tmp_path) -> Generator[AuthStore, None, None]:
    s = AuthStore(db_url=f"sqlite:///{tmp_path / 'auth.db'}")
    yield s
    s.close()


@pytest.fixture
def user(store: AuthStore) -> User:
    uid = store.create_user(User(email="viewer@example.com", role="Viewer"))
    return store.get_by_id(uid)


def _parse_set_cookies(resp) -> dict[str, dict]:
    """Map cookie name -> {"value": str, <lowercased attribute>: value or True}.

    Later headers for the same name win, as they would in a browser.
    """
    parsed: dict[str, dict] = {}
    headers = resp.headers
    # httpx responses expose get_list(); starlette responses expose getlist().
    get_list = getattr(headers, "get_list", None) or headers.getlist
    for header in get_list("set-cookie"):
        first, *attrs = header.split(";")
        name, _, value = first.partition("=")
        entry: dict = {"value": value.strip().strip('"')}
        for attr in attrs:
            key, sep, val = attr.strip().partition("=")
            entry[key.lower()] = val if sep else True
        parsed[name.strip()] = entry
    return parsed


@pytest.fixture
def set_cookies() -> Callable[..., dict[str, dict]]:
    return _parse_set_cookies


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> Generator[None, None, None]:
    """Every test starts with empty slowapi counters."""
    limiter.reset()
    yield
    limiter.reset()
