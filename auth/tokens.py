"""
auth/tokens.py -- Password hashing, JWT, refresh token, and cookie utilities.

Security design decisions:
  JWT: python-jose with HS256, signed with JWT_SECRET. Access tokens carry
       id, email, roles and expire after JWT_EXP. Verification returns None
       on any failure -- the guard turns that into a 401.

  Email confirmation tokens are JWTs with a "purpose" claim and no roles, so
       decode_access_token() rejects them and a mailed link can never be used
       as a bearer credential.

  Passwords: bcrypt directly. The _DUMMY_HASH constant enables timing
       equalization in AuthService.login() so response time does not reveal
       whether an email is registered.

  Refresh tokens are opaque UUID4 strings. They are looked up in the tokens
       table, never decoded, so revocation is immediate.

Layer rule: no imports from api/, users/, mailer/, or cache/. Import from
core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import bcrypt
from jose import JWTError, jwt

from auth.models import Token, User
from core.config import get_settings

logger = logging.getLogger("lanterra.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

REFRESH_TOKEN_COOKIE = "refreshtoken"
BEARER_PREFIX = "Bearer "
EMAIL_CONFIRM_PURPOSE = "email_confirm"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    New passwords are capped at 72 UTF-8 bytes by the request models;
    bcrypt raises ValueError above that.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=10)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load; see AuthService.login().
_DUMMY_HASH: str = hash_password("lanterra_timing_dummy")


def verify_password_or_dummy(plain: str, hashed: str | None) -> bool:
    """Run bcrypt exactly once whether or not a hash exists.

    Callers that would otherwise return early for an unknown account call
    this instead so both branches cost the same.
    """
    if hashed is None:
        verify_password(plain, _DUMMY_HASH)
        return False
    return verify_password(plain, hashed)


# ---------------------------------------------------------------------------
# Access tokens
# ---------------------------------------------------------------------------


def create_access_token(user: User) -> str:
    """Encode a signed JWT with the user's identity and roles.

    The returned string has no "Bearer " prefix; see bearer().
    """
    expire = datetime.now(timezone.utc) + _settings.access_token_ttl
    payload = {
        "id": user.id,
        "email": user.email,
        "roles": list(user.roles),
        "exp": expire,
    }
    return jwt.encode(payload, _settings.jwt_secret, algorithm=_ALGORITHM)


def bearer(token: str) -> str:
    return f"{BEARER_PREFIX}{token}"


def decode_access_token(token: str) -> dict | None:
    """Decode and verify an access JWT. Returns the payload dict or None on any failure."""
    try:
        payload = jwt.decode(token, _settings.jwt_secret, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if "purpose" in payload or not all(k in payload for k in ("id", "email", "roles")):
        return None
    return payload


# ---------------------------------------------------------------------------
# Email confirmation tokens
# ---------------------------------------------------------------------------


def create_email_token(user: User) -> str:
    expire = datetime.now(timezone.utc) + _settings.access_token_ttl
    payload = {
        "id": user.id,
        "email": user.email,
        "purpose": EMAIL_CONFIRM_PURPOSE,
        "exp": expire,
    }
    return jwt.encode(payload, _settings.jwt_secret, algorithm=_ALGORITHM)


def decode_email_token(token: str) -> dict | None:
    try:
        payload = jwt.decode(token, _settings.jwt_secret, algorithms=[_ALGORITHM])
    except JWTError as exc:
        logger.info("Rejected email token: %s", exc)
        return None
    if payload.get("purpose") != EMAIL_CONFIRM_PURPOSE:
        return None
    return payload


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------


def refresh_token_expiry() -> datetime:
    return datetime.now(timezone.utc) + _settings.refresh_token_ttl


def is_expired(token: Token) -> bool:
    exp = token.exp if token.exp.tzinfo is not None else token.exp.replace(tzinfo=timezone.utc)
    return exp <= datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_refresh_cookie(response, token: Token) -> None:
    """Write the refresh token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    expires: matches the token row so both expire together.
    """
    response.set_cookie(
        REFRESH_TOKEN_COOKIE,
        value=token.token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        path="/",
        expires=token.exp,
    )


def clear_refresh_cookie(response) -> None:
    response.delete_cookie(
        REFRESH_TOKEN_COOKIE,
        path="/",
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
    )
