"""
tests/test_user_service.py -- UserService cache bookkeeping and AuthService rules.

Uses the stores directly (no HTTP) so cache contents can be inspected.
"""

from __future__ import annotations

import asyncio
import os
from datetime import datetime, timedelta, timezone

import pytest
from conftest import create_user, make_test_stores

from auth.models import Role, UserAgentInfo
from auth.service import AuthService
from auth.tokens import verify_password
from core.config import get_settings
from core.errors import ConflictError, ForbiddenError, UnauthorizedError
from mailer.service import MailerService
from users.service import UserService

AGENT = UserAgentInfo("pytest", "127.0.0.1")


@pytest.fixture()
def services():
    store, cache = make_test_stores(f"svc_{os.urandom(4).hex()}")
    users = UserService(store, cache, cache_ttl=60)
    auth = AuthService(store, users, MailerService(get_settings(), users))
    yield store, cache, users, auth
    cache.close()
    store.close()


# ---------------------------------------------------------------------------
# UserService
# ---------------------------------------------------------------------------


def test_save_hashes_password_and_caches_both_keys(services):
    store, cache, users, _ = services
    user = users.save("cache@example.com", "S3cret!x")
    assert user.hashed_password != "S3cret!x"
    assert verify_password("S3cret!x", user.hashed_password)
    assert cache.get(user.id)["email"] == "cache@example.com"
    assert cache.get("cache@example.com")["id"] == user.id


def test_save_existing_email_updates_in_place(services):
    _, _, users, _ = services
    first = users.save("same@example.com", "S3cret!x")
    second = users.save("same@example.com", is_confirmed=True)
    assert second.id == first.id
    assert second.is_confirmed is True
    assert second.hashed_password == first.hashed_password


def test_find_one_serves_from_cache_until_reset(services):
    store, _, users, _ = services
    user = users.save("stale@example.com", "S3cret!x")
    store.update_user(user.id, is_confirmed=True)

    assert users.find_one(user.id).is_confirmed is False
    assert users.find_one(user.id, reset=True).is_confirmed is True


def test_find_one_miss_populates_cache(services):
    store, cache, users, _ = services
    user = create_user(store, "miss@example.com", "S3cret!x")
    assert cache.get(user.email) is None
    assert users.find_one(user.email).id == user.id
    assert cache.get(user.id) is not None


def test_set_block_unblock_clears_cache(services):
    store, cache, users, _ = services
    user = users.save("block@example.com", "S3cret!x")
    updated = users.set_block_unblock(user.email)
    assert updated.is_blocked is True
    assert cache.get(user.id) is None
    assert cache.get(user.email) is None
    assert users.find_one(user.email).is_blocked is True


def test_set_block_unblock_unknown_user_is_forbidden(services):
    _, _, users, _ = services
    with pytest.raises(ForbiddenError):
        users.set_block_unblock("ghost@example.com")


def test_delete_clears_deleted_users_cache(services):
    store, cache, users, _ = services
    admin = create_user(store, "admin@example.com", "S3cret!x", roles=[Role.USER.value, Role.ADMIN.value])
    victim = users.save("victim@example.com", "S3cret!x")
    assert users.delete(victim.id, admin) == {"id": victim.id, "email": victim.email}
    assert cache.get(victim.id) is None
    assert cache.get(victim.email) is None
    assert users.find_one(victim.email) is None


def test_update_email_drops_old_key(services):
    store, cache, users, _ = services
    admin = create_user(store, "admin@example.com", "S3cret!x", roles=[Role.USER.value, Role.ADMIN.value])
    user = users.save("old@example.com", "S3cret!x")
    updated = users.update("old@example.com", "N3w!pass", admin, change_user_email="new@example.com")
    assert updated.email == "new@example.com"
    assert cache.get("old@example.com") is None
    assert cache.get("new@example.com")["id"] == user.id
    assert users.find_one("old@example.com") is None


# ---------------------------------------------------------------------------
# AuthService
# ---------------------------------------------------------------------------


def test_register_duplicate_raises_conflict(services):
    _, _, _, auth = services
    asyncio.run(auth.register("dup@example.com", "S3cret!x"))
    with pytest.raises(ConflictError):
        asyncio.run(auth.register("dup@example.com", "S3cret!x"))


def test_login_issues_pair_for_fingerprint(services):
    store, _, users, auth = services
    user = users.save("login@example.com", "S3cret!x")
    pair = auth.login("login@example.com", "S3cret!x", AGENT)
    assert pair.access_token.startswith("Bearer ")
    assert pair.refresh_token.user_id == user.id
    assert store.find_token(user.id, AGENT).token == pair.refresh_token.token


def test_login_blocked_user_raises(services):
    _, _, users, auth = services
    users.save("blocked@example.com", "S3cret!x", is_blocked=True)
    with pytest.raises(UnauthorizedError) as exc_info:
        auth.login("blocked@example.com", "S3cret!x", AGENT)
    assert exc_info.value.code == "blocked"


def test_expired_refresh_token_is_rejected_and_consumed(services):
    store, _, users, auth = services
    user = users.save("expired@example.com", "S3cret!x")
    past = datetime.now(timezone.utc) - timedelta(seconds=1)
    token = store.upsert_token(user.id, AGENT, past)
    with pytest.raises(UnauthorizedError):
        auth.refresh_tokens(token.token, AGENT)
    assert store.get_token_owner(token.token) is None


def test_logout_all_returns_deleted_count(services):
    store, _, users, auth = services
    user = users.save("many@example.com", "S3cret!x")
    first = auth.login(user.email, "S3cret!x", UserAgentInfo("a", "10.0.0.1"))
    auth.login(user.email, "S3cret!x", UserAgentInfo("b", "10.0.0.2"))
    assert auth.logout_all(first.refresh_token.token) == 2


def test_save_accepts_known_provider_only(services):
    _, _, users, _ = services
    assert users.save("oauth@example.com", provider="GOOGLE").provider == "GOOGLE"
    with pytest.raises(ValueError):
        users.save("oauth2@example.com", provider="MYSPACE")
