"""
API request and response models for the Lanterra auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

UserResponse never carries hashed_password: the field does not exist on the
model, so it cannot leak through response_model serialization.
"""

import re
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field, model_validator

from auth.models import User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_MAX_LENGTH = 32
PASSWORD_MIN_LENGTH = 6
PASSWORD_MAX_LENGTH = 32
# bcrypt rejects input longer than 72 bytes; multibyte characters count in full.
PASSWORD_MAX_BYTES = 72

# At least one digit, one letter, and one special character (underscore counts).
_PASSWORD_COMPLEXITY = re.compile(r"^(?=.*\d)(?=.*[a-zA-Z])(?=.*[\W_]).+$")


def _check_email_length(value: str) -> str:
    if len(value) > EMAIL_MAX_LENGTH:
        raise ValueError(f"Email must be at most {EMAIL_MAX_LENGTH} characters")
    return value


def _check_complexity(value: str) -> str:
    if not _PASSWORD_COMPLEXITY.match(value):
        raise ValueError("Password must contain at least one digit, one letter and one special character")
    return value


def _check_byte_length(value: str) -> str:
    if len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValueError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes when UTF-8 encoded")
    return value


_Email = Annotated[EmailStr, AfterValidator(_check_email_length)]
_NewPassword = Annotated[
    str,
    Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH),
    AfterValidator(_check_byte_length),
    AfterValidator(_check_complexity),
]


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: _Email
    password: _NewPassword
    password_repeat: str

    @model_validator(mode="after")
    def passwords_match(self) -> "RegisterRequest":
        if self.password != self.password_repeat:
            raise ValueError("Passwords do not match")
        return self


class LoginRequest(BaseModel):
    """Request body for POST /api/auth/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: _Email
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)


class UpdateUserRequest(BaseModel):
    """Request body for PUT /api/user/update-user.

    email selects the record to update. change_user_email is honoured only
    when the caller is an ADMIN.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: _Email
    password: _NewPassword
    password_repeat: str
    change_user_email: Optional[_Email] = None

    @model_validator(mode="after")
    def passwords_match(self) -> "UpdateUserRequest":
        if self.password != self.password_repeat:
            raise ValueError("Passwords do not match")
        return self


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user record."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    roles: list[str]
    provider: Optional[str] = None
    is_blocked: bool
    is_confirmed: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            roles=list(user.roles),
            provider=user.provider,
            is_blocked=user.is_blocked,
            is_confirmed=user.is_confirmed,
            created_at=user.created_at or "",
            updated_at=user.updated_at or "",
        )


class TokenResponse(BaseModel):
    """Body of a successful login or refresh. The refresh token travels in a cookie."""

    model_config = ConfigDict(frozen=True)

    access_token: str = Field(description='Access JWT with "Bearer " prefix.')
    token_type: str = "bearer"


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class DeletedUserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: str


class ErrorDetail(BaseModel):
    """Error envelope content."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Standard error response body for all API error cases."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
