"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic beyond serialization
helpers used by the cache). Stores and services do the work.

Layer rule: no imports from api/, users/, mailer/, or cache/.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class Provider(str, Enum):
    GOOGLE = "GOOGLE"
    YANDEX = "YANDEX"


@dataclass
class User:
    """A registered account.

    id is a UUID4 string assigned by the store on first insert. email is the
    natural key: UserStore.save_user() upserts on it.

    hashed_password is None for accounts created through an external provider.
    roles holds Role values as plain strings so the record survives a JSON
    round trip through the cache unchanged.
    """

    email: str
    id: str | None = None
    hashed_password: str | None = None
    roles: list[str] = field(default_factory=lambda: [Role.USER.value])
    provider: str | None = None
    is_blocked: bool = False
    is_confirmed: bool = False
    created_at: str | None = None
    updated_at: str | None = None

    def has_role(self, *roles: Role | str) -> bool:
        wanted = {r.value if isinstance(r, Role) else r for r in roles}
        return bool(wanted.intersection(self.roles))

    @property
    def is_admin(self) -> bool:
        return self.has_role(Role.ADMIN)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> User:
        return cls(**data)


@dataclass
class Token:
    """A refresh token row.

    token is an opaque UUID4 string delivered in the refresh cookie. One row
    exists per (user_id, user_agent, user_real_ip) fingerprint; the value and
    exp are rotated in place on every login and refresh.
    """

    token: str
    exp: datetime
    user_id: str
    user_agent: str | None = None
    user_real_ip: str | None = None


@dataclass(frozen=True)
class UserAgentInfo:
    """Client fingerprint taken from request headers."""

    user_agent: str | None = None
    user_real_ip: str | None = None


@dataclass
class TokenPair:
    access_token: str  # "Bearer <jwt>"
    refresh_token: Token
