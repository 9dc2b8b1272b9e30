"""
api/routes/auth.py -- Registration, login, and refresh token endpoints.

Routes:
  POST /api/auth/register        -- create account; mails confirmation link
  POST /api/auth/login           -- password login; access token in body, refresh token in cookie
  GET  /api/auth/refresh-tokens  -- rotate the refresh cookie; new access token in body
  GET  /api/auth/logout          -- revoke this device's refresh token; clear cookie
  GET  /api/auth/logout-all      -- revoke every refresh token of the user; clear cookie

Security:
  POST /register and /login are rate-limited per IP (LOGIN_RATE_LIMIT).
  AuthService.login() provides timing equalization -- use it, never inline.
  Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import LoginRequest, MessageResponse, RegisterRequest, TokenResponse, UserResponse
from auth.dependencies import get_refresh_token, get_user_agent
from auth.models import TokenPair, UserAgentInfo
from auth.service import AuthService
from auth.tokens import clear_refresh_cookie, set_refresh_cookie
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - POST /api/auth/register:        public
# - POST /api/auth/login:           public
# - GET  /api/auth/refresh-tokens:  refresh cookie required (401 without it)
# - GET  /api/auth/logout:          refresh cookie required
# - GET  /api/auth/logout-all:      refresh cookie required
router = APIRouter()


def _token_response(pair: TokenPair) -> JSONResponse:
    resp = JSONResponse(
        status_code=200,
        content=TokenResponse(access_token=pair.access_token).model_dump(),
    )
    set_refresh_cookie(resp, pair.refresh_token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _logout_response(message: str) -> JSONResponse:
    resp = JSONResponse(status_code=200, content=MessageResponse(message=message).model_dump())
    clear_refresh_cookie(resp)
    return resp


@limiter.limit(_settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=UserResponse, status_code=201)
async def register(request: Request, body: RegisterRequest) -> UserResponse:
    """Create a local account with the USER role.

    409 if the email is already registered. The confirmation email is sent
    best-effort; delivery problems do not fail the registration.
    """
    auth: AuthService = request.app.state.auth
    user = await auth.register(body.email, body.password)
    if user is None:
        raise HTTPException(
            status_code=400,
            detail={
                "code": "registration_failed",
                "message": f"Could not register user with email: {body.email}. Try again or contact support.",
            },
        )
    return UserResponse.from_user(user)


@limiter.limit(_settings.login_rate_limit)
@router.post("/auth/login", response_model=TokenResponse)
def login(
    request: Request,
    body: LoginRequest,
    agent: UserAgentInfo = Depends(get_user_agent),
) -> JSONResponse:
    """Authenticate with email and password.

    Returns the same 401 for an unknown email and a wrong password. Blocked
    accounts get 401 as well.
    """
    auth: AuthService = request.app.state.auth
    pair = auth.login(body.email, body.password, agent)
    return _token_response(pair)


@router.get("/auth/refresh-tokens", response_model=TokenResponse)
def refresh_tokens(
    request: Request,
    token: str = Depends(get_refresh_token),
    agent: UserAgentInfo = Depends(get_user_agent),
) -> JSONResponse:
    """Exchange the refresh cookie for a new access token and a new refresh cookie.

    The presented refresh token is consumed: replaying it afterwards is 401.
    """
    auth: AuthService = request.app.state.auth
    pair = auth.refresh_tokens(token, agent)
    return _token_response(pair)


@router.get("/auth/logout", response_model=MessageResponse)
def logout(request: Request, token: str = Depends(get_refresh_token)) -> JSONResponse:
    """Revoke the refresh token of this device and clear the cookie."""
    auth: AuthService = request.app.state.auth
    auth.logout(token)
    return _logout_response("You have logged out.")


@router.get("/auth/logout-all", response_model=MessageResponse)
def logout_all(request: Request, token: str = Depends(get_refresh_token)) -> JSONResponse:
    """Revoke every refresh token of the cookie's owner and clear the cookie."""
    auth: AuthService = request.app.state.auth
    auth.logout_all(token)
    return _logout_response("You have logged out on all devices.")
