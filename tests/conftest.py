"""
tests/conftest.py -- Shared test fixtures for Lanterra auth integration tests.

This module provides:
  - make_test_stores(): creates an isolated in-memory user DB and cache
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient plus an admin and a regular user with access tokens
  - auth_headers(): Authorization header for an access token

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment must be set before any core/auth import: DEBUG lets
get_settings() auto-generate JWT_SECRET, ALLOWED_HOSTS admits the
"testserver" host TestClient sends, and LOGIN_RATE_LIMIT is raised so the
suite never trips the per-IP limiter.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set env before any auth/core import; get_settings() is cached.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["*"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app, wire_services
from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import bearer, create_access_token, hash_password
from cache.store import UserCache

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "Adm1n!pass"
USER_EMAIL = "user@example.com"
USER_PASSWORD = "Us3r!pass"


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_test_stores(db_suffix: str) -> tuple[UserStore, UserCache]:
    """Create an isolated named shared-memory user store and an in-memory cache.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'auth', 'user').
    """
    db_url = f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=db_url), UserCache(":memory:", ttl=3600)


def create_user(store: UserStore, email: str, password: str, roles: list[str] | None = None) -> User:
    """Insert a user directly through the store, optionally with extra roles."""
    user = store.save_user(email, hashed_password=hash_password(password))
    if roles:
        user = store.update_user(user.id, roles=roles)
    return user


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": token}


def _patch_lifespan(user_store: UserStore, cache: UserCache):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the production databases.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_services(app, user_store, cache)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@dataclass
class ApiContext:
    client: TestClient
    store: UserStore
    cache: UserCache
    admin: User
    admin_token: str
    user: User
    user_token: str


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def api_client() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext backed by fresh stores.

    Function-scoped because most tests mutate users (block, delete, rotate
    tokens); each test gets its own DB name so nothing leaks between them.
    """
    suffix = os.urandom(4).hex()
    user_store, cache = make_test_stores(suffix)

    admin = create_user(user_store, ADMIN_EMAIL, ADMIN_PASSWORD, roles=[Role.USER.value, Role.ADMIN.value])
    user = create_user(user_store, USER_EMAIL, USER_PASSWORD)

    app.router.lifespan_context = _patch_lifespan(user_store, cache)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(
            client=client,
            store=user_store,
            cache=cache,
            admin=admin,
            admin_token=bearer(create_access_token(admin)),
            user=user,
            user_token=bearer(create_access_token(user)),
        )

    cache.close()
    user_store.close()
