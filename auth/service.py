"""
auth/service.py -- Registration, login, and refresh token rotation.

Token lifecycle:
  login    -- verify credentials, then upsert the token row for the client's
              (user_agent, user_real_ip) fingerprint with a fresh value.
  refresh  -- pop the presented token (it is deleted whatever happens next),
              check expiry and owner, then issue a new pair. A refresh token
              is therefore single-use.
  logout   -- delete the presented token.
  logout-all -- delete every token owned by the presented token's user.

Failures are logged and raised as core.errors.AppError subclasses; the API
layer renders them.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from auth.models import TokenPair, User, UserAgentInfo
from auth.store import UserStore
from auth.tokens import bearer, create_access_token, is_expired, refresh_token_expiry, verify_password_or_dummy
from core.errors import ConflictError, ForbiddenError, UnauthorizedError
from mailer.service import MailerService
from users.service import UserService

logger = logging.getLogger("lanterra.auth")


class AuthService:
    def __init__(self, store: UserStore, users: UserService, mailer: MailerService) -> None:
        self.store = store
        self.users = users
        self.mailer = mailer

    async def register(self, email: str, password: str) -> User | None:
        """Create an account and mail the confirmation link.

        Raises ConflictError if the email is taken. Returns None if the store
        write failed. The lookup and the bcrypt hash run in the threadpool so
        they do not block the event loop.
        """
        if await run_in_threadpool(self.users.find_one, email) is not None:
            raise ConflictError(f"User with email: {email} already exists")
        user = await run_in_threadpool(self.users.save, email, password)
        if user is None:
            return None
        await self.mailer.send_email_confirmation(user)
        return user

    def login(self, email: str, password: str, agent: UserAgentInfo) -> TokenPair:
        """Authenticate with timing equalization and issue a token pair.

        Unknown email and wrong password produce the same error so responses
        do not reveal which accounts exist.
        """
        user = self.users.find_one(email)
        hashed = user.hashed_password if user is not None else None
        if not verify_password_or_dummy(password, hashed):
            raise UnauthorizedError("Invalid email or password", code="bad_credentials")
        if user.is_blocked:
            raise UnauthorizedError(f"Account with email: {email} is blocked", code="blocked")
        return self.generate_tokens(user, agent)

    def generate_tokens(self, user: User, agent: UserAgentInfo) -> TokenPair:
        access_token = bearer(create_access_token(user))
        try:
            refresh_token = self.store.upsert_token(user.id, agent, refresh_token_expiry())
        except SQLAlchemyError as exc:
            logger.exception("refresh token upsert failed for user %s", user.id)
            raise UnauthorizedError("Could not issue tokens") from exc
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    def refresh_tokens(self, refresh_token: str, agent: UserAgentInfo) -> TokenPair:
        try:
            token = self.store.pop_token(refresh_token)
        except SQLAlchemyError as exc:
            logger.exception("refresh token delete failed")
            raise UnauthorizedError("Unknown session") from exc
        if token is None or is_expired(token):
            raise UnauthorizedError("Unknown session")
        user = self.users.find_one(token.user_id)
        if user is None:
            logger.error("refresh token %s points at a missing user %s", token.token, token.user_id)
            raise UnauthorizedError("Unknown session")
        if user.is_blocked:
            raise UnauthorizedError(f"Account with email: {user.email} is blocked", code="blocked")
        return self.generate_tokens(user, agent)

    def logout(self, refresh_token: str) -> None:
        try:
            deleted = self.store.delete_token(refresh_token)
        except SQLAlchemyError:
            logger.exception("delete token failed")
            deleted = 0
        if deleted == 0:
            raise UnauthorizedError("Unknown session")

    def logout_all(self, refresh_token: str) -> int:
        """Delete every refresh token owned by the presenter. Returns how many were removed."""
        user_id = self.store.get_token_owner(refresh_token)
        if user_id is None:
            raise ForbiddenError("User ID not found")
        try:
            deleted = self.store.delete_user_tokens(user_id)
        except SQLAlchemyError:
            logger.exception("delete tokens failed for user %s", user_id)
            deleted = 0
        if deleted == 0:
            raise UnauthorizedError("Unknown session")
        return deleted
