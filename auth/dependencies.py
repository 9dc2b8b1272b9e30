"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

get_current_user() reads "Authorization: Bearer <jwt>", verifies the JWT and
re-loads the user through UserService.find_one() (cache first), so a blocked
or deleted account loses access as soon as its cache entries are cleared.

require_roles(*roles) wraps get_current_user() and raises HTTP 403 unless the
user holds at least one of the given roles. A route with no role requirement
simply depends on get_current_user().

get_user_agent() and get_refresh_token() extract the client fingerprint and
the refresh cookie for the /auth routes.

This module may import from fastapi (for Depends/HTTPException/Request)
because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, HTTPException, Request

from auth.models import Role, User, UserAgentInfo
from auth.tokens import BEARER_PREFIX, REFRESH_TOKEN_COOKIE, decode_access_token


def get_user_agent(request: Request) -> UserAgentInfo:
    """Return the User-Agent header and the client's real IP.

    The IP comes from X-Real-IP, else the last hop in X-Forwarded-For (the
    one appended by our own proxy), else the socket peer.
    """
    real_ip = request.headers.get("x-real-ip")
    if not real_ip:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            real_ip = forwarded.split(",")[-1].strip() or None
    if not real_ip and request.client:
        real_ip = request.client.host
    return UserAgentInfo(
        user_agent=request.headers.get("user-agent"),
        user_real_ip=real_ip,
    )


def get_refresh_token(request: Request) -> str:
    """Return the refresh cookie value. Raises HTTP 401 if it is absent."""
    token = request.cookies.get(REFRESH_TOKEN_COOKIE)
    if not token:
        raise HTTPException(
            status_code=401,
            detail={"code": "unknown_session", "message": "Unknown session."},
        )
    return token


def get_current_user(request: Request) -> User:
    """Require a valid bearer token for an existing, unblocked user.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    auth_header = request.headers.get("Authorization", "")
    payload = None
    if auth_header.startswith(BEARER_PREFIX):
        payload = decode_access_token(auth_header[len(BEARER_PREFIX) :])
    if payload is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )

    user = request.app.state.users.find_one(payload["email"])
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "User not found or inactive."},
        )
    if user.is_blocked:
        raise HTTPException(
            status_code=401,
            detail={"code": "blocked", "message": "User is blocked."},
        )
    return user


def require_roles(*roles: Role) -> Callable[..., User]:
    """Build a dependency that admits users holding any of `roles`.

    Use as a FastAPI dependency:
        @router.put("/admin-only")
        async def route(user: User = Depends(require_roles(Role.ADMIN))): ...
    """

    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if roles and not current_user.has_role(*roles):
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Insufficient role for this operation."},
            )
        return current_user

    return dependency
