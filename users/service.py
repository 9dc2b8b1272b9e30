"""
users/service.py -- User CRUD with a read-through TTL cache.

Every user record is cached under two keys, its id and its email, because
callers look users up by either (the bearer guard by email, refresh tokens by
id, the /user routes by whatever the client sent). Every mutation clears both
keys, so neither can serve a stale record after a write.

Store and cache failures are logged and turned into None / a cache miss; the
caller decides which HTTP error that becomes.

Layer rule: imports from auth/, cache/ and core/ only. No imports from api/.
"""

from __future__ import annotations

import logging
import sqlite3

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import Provider, User
from auth.store import UserStore
from auth.tokens import hash_password
from cache.store import UserCache
from core.errors import BadRequestError, ConflictError, ForbiddenError

logger = logging.getLogger("lanterra.users")


class UserService:
    def __init__(self, store: UserStore, cache: UserCache, cache_ttl: int | None = None) -> None:
        self.store = store
        self.cache = cache
        self.cache_ttl = cache_ttl

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save(
        self,
        email: str,
        password: str | None = None,
        *,
        provider: str | None = None,
        roles: list[str] | None = None,
        is_blocked: bool | None = None,
        is_confirmed: bool | None = None,
    ) -> User | None:
        """Create or update the user with this email and refresh its cache entries.

        The password, if given, is hashed before it reaches the store.
        provider must be a Provider value; anything else raises ValueError.
        Returns None if the store write fails.
        """
        hashed = hash_password(password) if password else None
        if provider is not None:
            provider = Provider(provider).value
        try:
            user = self.store.save_user(
                email,
                hashed_password=hashed,
                provider=provider,
                roles=roles,
                is_blocked=is_blocked,
                is_confirmed=is_confirmed,
            )
        except SQLAlchemyError:
            logger.exception("save user failed for %s", email)
            return None
        self._clear_user_cache(user.id, user.email)
        self._set_user_cache(user)
        return user

    def confirm_email(self, user: User) -> User | None:
        return self.save(user.email, is_confirmed=True)

    def delete(self, user_id: str, current: User) -> dict:
        """Delete a user. Allowed for the user themself or an ADMIN."""
        if current.id != user_id and not current.is_admin:
            raise ForbiddenError(f"No access or no user with id: {user_id}")
        try:
            deleted = self.store.delete_user(user_id)
        except SQLAlchemyError:
            logger.exception("user delete failed for %s", user_id)
            deleted = None
        if deleted is None:
            raise BadRequestError(f"User with id: {user_id} not found.", code="not_found")
        self._clear_user_cache(deleted.id, deleted.email)
        return {"id": deleted.id, "email": deleted.email}

    def set_block_unblock(self, id_or_email: str) -> User:
        """Toggle is_blocked on a user and drop its cache entries."""
        user = self.find_one(id_or_email)
        if user is None:
            raise ForbiddenError(f"User with id/email: {id_or_email} not found")
        try:
            updated = self.store.update_user(user.id, is_blocked=not user.is_blocked)
        except SQLAlchemyError:
            logger.exception("set_block_unblock failed for %s", id_or_email)
            updated = None
        if updated is None:
            raise ForbiddenError(f"User with id/email: {id_or_email} not found")
        self._clear_user_cache(user.id, user.email)
        return updated

    def update(
        self,
        email: str,
        password: str | None,
        current: User,
        change_user_email: str | None = None,
    ) -> User:
        """Update the password of the user identified by email.

        A non-admin may only update their own record. An admin may update any
        record and may also move it to change_user_email; that field is ignored
        for everyone else.
        """
        if email != current.email and not current.is_admin:
            raise ForbiddenError("You do not have permission to perform this operation")

        target = self.store.get_user(email)
        if target is None or target.email != email:
            raise BadRequestError(f"User with email: {email} not found.", code="not_found")

        fields: dict = {}
        if password:
            fields["hashed_password"] = hash_password(password)
        if current.is_admin and change_user_email and change_user_email != email:
            fields["email"] = change_user_email
        if not fields:
            raise BadRequestError("No fields to update.", code="no_changes")

        try:
            updated = self.store.update_user(target.id, **fields)
        except IntegrityError as exc:
            raise ConflictError(f"User with email: {change_user_email} already exists") from exc

        if updated is None:
            raise BadRequestError(f"User with email: {email} not found.", code="not_found")
        self._clear_user_cache(target.id, target.email, current.id)
        self._set_user_cache(updated)
        return updated

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_one(self, id_or_email: str, reset: bool = False) -> User | None:
        """Return the user whose id or email equals id_or_email.

        reset=True drops the cached entry first and forces a database read.
        """
        if reset:
            self._clear_user_cache(id_or_email)
        else:
            cached = self._get_cached(id_or_email)
            if cached is not None:
                return cached
        user = self.store.get_user(id_or_email)
        if user is None:
            return None
        self._set_user_cache(user)
        return user

    # ------------------------------------------------------------------
    # Cache bookkeeping
    # ------------------------------------------------------------------

    def _get_cached(self, key: str) -> User | None:
        try:
            data = self.cache.get(key)
        except sqlite3.Error:
            logger.exception("cache read failed for %s", key)
            return None
        return User.from_dict(data) if data is not None else None

    def _set_user_cache(self, user: User) -> None:
        try:
            for key in {user.id, user.email}:
                if key:
                    self.cache.set(key, user.to_dict(), self.cache_ttl)
        except sqlite3.Error:
            logger.exception("cache write failed for user %s", user.id)

    def _clear_user_cache(self, *keys: str | None) -> None:
        try:
            self.cache.delete(*(k for k in keys if k))
        except sqlite3.Error:
            logger.exception("cache clear failed for %s", keys)
