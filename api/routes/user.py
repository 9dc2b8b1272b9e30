"""
api/routes/user.py -- User lookup and management endpoints.

Routes:
  GET    /api/user/{id_or_email}                          -- fetch a user
  DELETE /api/user/{user_id}                              -- delete (self or ADMIN)
  PUT    /api/user/set-block-unblock-user/{id_or_email}   -- toggle block flag (ADMIN)
  PUT    /api/user/update-user                            -- change password / email

All routes require a bearer access token. Ownership rules live in
UserService so they hold for any caller, not just these handlers.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.models import DeletedUserResponse, MessageResponse, UpdateUserRequest, UserResponse
from auth.dependencies import get_current_user, require_roles
from auth.models import Role, User
from users.service import UserService

# Auth policy:
# - GET    /api/user/{id_or_email}:                         requires auth
# - DELETE /api/user/{user_id}:                             requires auth + self-or-admin check in service
# - PUT    /api/user/set-block-unblock-user/{id_or_email}:  requires ADMIN (require_roles)
# - PUT    /api/user/update-user:                           requires auth + self-or-admin check in service
router = APIRouter()


@router.put("/user/update-user", response_model=UserResponse)
def update_user(
    request: Request,
    body: UpdateUserRequest,
    current_user: User = Depends(get_current_user),
) -> UserResponse:
    """Change the password of the record selected by body.email.

    Users may only update themselves; ADMINs may update anyone and move the
    record to change_user_email.
    """
    users: UserService = request.app.state.users
    updated = users.update(body.email, body.password, current_user, body.change_user_email)
    return UserResponse.from_user(updated)


@router.put("/user/set-block-unblock-user/{id_or_email}", status_code=202, response_model=MessageResponse)
def set_block_unblock_user(
    request: Request,
    id_or_email: str,
    current_user: User = Depends(require_roles(Role.ADMIN)),
) -> JSONResponse:
    """Toggle the blocked flag. A blocked user fails login, refresh, and bearer checks."""
    users: UserService = request.app.state.users
    updated = users.set_block_unblock(id_or_email)
    return JSONResponse(
        status_code=202,
        content=MessageResponse(
            message=f"Block status of user with email: {updated.email} changed to: {str(updated.is_blocked).lower()}"
        ).model_dump(),
    )


@router.get("/user/{id_or_email}", response_model=UserResponse)
def find_user(
    request: Request,
    id_or_email: str,
    current_user: User = Depends(get_current_user),
) -> UserResponse:
    users: UserService = request.app.state.users
    user = users.find_one(id_or_email)
    if user is None:
        raise HTTPException(
            status_code=400,
            detail={"code": "not_found", "message": f"User with id/email: {id_or_email} not found."},
        )
    return UserResponse.from_user(user)


@router.delete("/user/{user_id}", response_model=DeletedUserResponse)
def delete_user(
    request: Request,
    user_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
) -> DeletedUserResponse:
    """Delete a user and its refresh tokens. Allowed for the user themself or an ADMIN."""
    users: UserService = request.app.state.users
    deleted = users.delete(str(user_id), current_user)
    return DeletedUserResponse(**deleted)
