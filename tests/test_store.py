"""
tests/test_store.py -- UserStore and UserCache persistence tests.

Covers:
  - save_user upsert semantics (insert ignores roles, update skips None)
  - one refresh token row per (user, user_agent, ip) fingerprint
  - delete_user removes tokens; purge_expired_tokens removes only past rows
  - UserCache expiry and multi-key delete
"""

from __future__ import annotations

import os
import time
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import UserAgentInfo
from auth.store import UserStore
from cache.store import UserCache


@pytest.fixture()
def store():
    s = UserStore(f"sqlite:///file:test_store_{os.urandom(4).hex()}?mode=memory&cache=shared&uri=true")
    yield s
    s.close()


@pytest.fixture()
def cache():
    c = UserCache(":memory:", ttl=60)
    yield c
    c.close()


def _future(days: int = 1) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def test_insert_always_starts_as_user_role(store):
    user = store.save_user("a@example.com", hashed_password="x", roles=["ADMIN"])
    assert user.roles == ["USER"]
    assert len(user.id) == 36


def test_update_writes_only_given_fields(store):
    user = store.save_user("a@example.com", hashed_password="x", provider="GOOGLE")
    updated = store.save_user("a@example.com", roles=["USER", "ADMIN"])
    assert updated.id == user.id
    assert updated.hashed_password == "x"
    assert updated.provider == "GOOGLE"
    assert updated.roles == ["USER", "ADMIN"]


def test_get_user_by_id_or_email(store):
    user = store.save_user("a@example.com", hashed_password="x")
    assert store.get_user(user.id).email == "a@example.com"
    assert store.get_user("a@example.com").id == user.id
    assert store.get_user("missing@example.com") is None


def test_update_user_email_collision_raises(store):
    store.save_user("a@example.com")
    b = store.save_user("b@example.com")
    with pytest.raises(IntegrityError):
        store.update_user(b.id, email="a@example.com")


def test_update_unknown_user_returns_none(store):
    assert store.update_user("no-such-id", is_blocked=True) is None


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------


def test_upsert_token_rotates_per_fingerprint(store):
    user = store.save_user("a@example.com")
    phone = UserAgentInfo("phone", "10.0.0.1")
    laptop = UserAgentInfo("laptop", "10.0.0.1")

    first = store.upsert_token(user.id, phone, _future())
    second = store.upsert_token(user.id, phone, _future())
    other = store.upsert_token(user.id, laptop, _future())

    assert first.token != second.token
    assert store.get_token_owner(first.token) is None
    assert store.find_token(user.id, phone).token == second.token
    assert store.find_token(user.id, laptop).token == other.token


def test_fingerprint_without_headers_matches_itself(store):
    user = store.save_user("a@example.com")
    anon = UserAgentInfo(None, None)
    first = store.upsert_token(user.id, anon, _future())
    second = store.upsert_token(user.id, anon, _future())
    assert store.get_token_owner(first.token) is None
    assert store.find_token(user.id, anon).token == second.token


def test_pop_token_is_single_use(store):
    user = store.save_user("a@example.com")
    token = store.upsert_token(user.id, UserAgentInfo("x", "1.1.1.1"), _future())
    assert store.pop_token(token.token).user_id == user.id
    assert store.pop_token(token.token) is None
    assert store.delete_token(token.token) == 0


def test_delete_user_removes_tokens(store):
    user = store.save_user("a@example.com")
    token = store.upsert_token(user.id, UserAgentInfo("x", "1.1.1.1"), _future())
    deleted = store.delete_user(user.id)
    assert deleted.email == "a@example.com"
    assert store.get_token_owner(token.token) is None
    assert store.delete_user(user.id) is None


def test_purge_expired_tokens(store):
    user = store.save_user("a@example.com")
    old = store.upsert_token(user.id, UserAgentInfo("old", None), _future(days=-1))
    live = store.upsert_token(user.id, UserAgentInfo("live", None), _future())
    assert store.purge_expired_tokens() == 1
    assert store.get_token_owner(old.token) is None
    assert store.get_token_owner(live.token) == user.id


def test_ping(store):
    assert store.ping() is True


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


def test_cache_round_trip_and_delete(cache):
    cache.set("a", {"v": 1})
    cache.set("b", {"v": 2})
    assert cache.get("a") == {"v": 1}
    assert cache.delete("a", "b", None, "") == 2
    assert cache.get("a") is None
    assert cache.delete() == 0


def test_cache_entry_expires(cache):
    cache.set("short", {"v": 1}, ttl=0)
    time.sleep(0.01)
    assert cache.get("short") is None


def test_cache_purge_expired(cache):
    cache.set("gone", {"v": 1}, ttl=0)
    cache.set("kept", {"v": 2})
    time.sleep(0.01)
    assert cache.purge_expired() == 1
    assert cache.get("kept") == {"v": 2}
