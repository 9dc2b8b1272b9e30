"""
api/routes/mailer.py -- Email confirmation link target.

Routes:
  GET /api/mailer/confirm-email?token=<jwt>  -- public; marks the address confirmed
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Request

from api.models import MessageResponse
from mailer.service import MailerService
from users.service import UserService

router = APIRouter()


@router.get("/mailer/confirm-email", response_model=MessageResponse)
def confirm_email(request: Request, token: Optional[str] = None) -> MessageResponse:
    """Verify the mailed token and mark the user's email as confirmed.

    400 if the token is missing, 401 if it is invalid, expired, or does not
    match the stored user.
    """
    if not token:
        raise HTTPException(
            status_code=400,
            detail={"code": "missing_token", "message": "Token not provided."},
        )
    mailer: MailerService = request.app.state.mailer
    users: UserService = request.app.state.users

    is_valid, user = mailer.compare_mail_token(token)
    if not is_valid or user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "invalid_token", "message": "Invalid token."},
        )
    if users.confirm_email(user) is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "Could not confirm email."},
        )
    return MessageResponse(message="Email confirmed.")
