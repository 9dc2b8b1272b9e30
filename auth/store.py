"""
auth/store.py -- SQLAlchemy Core persistence layer for users and refresh tokens.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_token are the mappers.
Service and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(user_id, user_agent, user_real_ip) on tokens is enforced in code
  (upsert_token) rather than SQL because both fingerprint columns are
  nullable and SQL treats two NULLs as distinct in UNIQUE constraints.

Timestamps are stored as ISO 8601 text in UTC so lexical order equals time
order; purge_expired_tokens() relies on that.

Layer rule: no imports from api/, users/, mailer/, or cache/.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, ForeignKey, MetaData, String, Table, Text, create_engine, event, or_, text
from sqlalchemy.engine import Engine

from auth.models import Role, Token, User, UserAgentInfo

_DEFAULT_DB_URL = "sqlite:///lanterra.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text),  # NULL for provider-only accounts
    Column("roles", Text, nullable=False),  # JSON list of Role values
    Column("provider", String(30)),  # "GOOGLE", "YANDEX"
    Column("is_blocked", Boolean, nullable=False, server_default="0"),
    Column("is_confirmed", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_tokens = Table(
    "tokens",
    _metadata,
    Column("token", String(36), primary_key=True),
    Column("exp", String(32), nullable=False),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("user_agent", Text),
    Column("user_real_ip", String(45)),
)


# ---------------------------------------------------------------------------
# SQLite pragmas
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign keys; both are per-connection in SQLite."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and Token entities.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user = store.save_user("a@example.com", hashed_password=hash_password("s3cret!"))
        store.get_user(user.id)
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def save_user(
        self,
        email: str,
        *,
        hashed_password: str | None = None,
        provider: str | None = None,
        roles: list[str] | None = None,
        is_blocked: bool | None = None,
        is_confirmed: bool | None = None,
    ) -> User:
        """Upsert a user by email and return the stored record.

        Insert: roles default to ["USER"] regardless of the roles argument;
        promotion to ADMIN is an explicit update on an existing record.
        Update: only arguments that are not None are written.
        """
        now = _now_iso()
        with self.engine.begin() as conn:
            existing = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
            if existing is None:
                user_id = str(uuid.uuid4())
                conn.execute(
                    _users.insert().values(
                        id=user_id,
                        email=email,
                        hashed_password=hashed_password,
                        roles=json.dumps([Role.USER.value]),
                        provider=provider,
                        is_blocked=bool(is_blocked),
                        is_confirmed=bool(is_confirmed),
                        created_at=now,
                        updated_at=now,
                    )
                )
            else:
                user_id = existing.id
                fields = {
                    "hashed_password": hashed_password,
                    "provider": provider,
                    "roles": json.dumps(roles) if roles is not None else None,
                    "is_blocked": is_blocked,
                    "is_confirmed": is_confirmed,
                }
                changes = {k: v for k, v in fields.items() if v is not None}
                changes["updated_at"] = now
                conn.execute(_users.update().where(_users.c.id == user_id).values(**changes))
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row)

    def get_user(self, id_or_email: str) -> User | None:
        """Look up a user whose email or id equals id_or_email."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(or_(_users.c.email == id_or_email, _users.c.id == id_or_email))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: str, **fields) -> User | None:
        """Update mutable fields on an existing user.

        Accepted fields: email, hashed_password, roles, provider, is_blocked,
        is_confirmed. Returns the updated record, or None if user_id was not found.
        """
        if "roles" in fields:
            fields["roles"] = json.dumps(list(fields["roles"]))
        fields["updated_at"] = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            if result.rowcount == 0:
                return None
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row)

    def delete_user(self, user_id: str) -> User | None:
        """Delete a user and all of its refresh tokens. Returns the deleted record."""
        with self.engine.begin() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
            if row is None:
                return None
            conn.execute(_tokens.delete().where(_tokens.c.user_id == user_id))
            conn.execute(_users.delete().where(_users.c.id == user_id))
        return _row_to_user(row)

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def find_token(self, user_id: str, agent: UserAgentInfo) -> Token | None:
        """Return the token row for this user and client fingerprint, if any.

        `column == None` compiles to IS NULL, so clients that send no
        User-Agent still match their own row.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _tokens.select().where(
                    (_tokens.c.user_id == user_id)
                    & (_tokens.c.user_agent == agent.user_agent)
                    & (_tokens.c.user_real_ip == agent.user_real_ip)
                )
            ).fetchone()
        return _row_to_token(row) if row is not None else None

    def upsert_token(self, user_id: str, agent: UserAgentInfo, exp: datetime) -> Token:
        """Rotate the fingerprint's token row, or insert one if none exists.

        Either way the returned token has a fresh UUID4 value, so any value
        previously issued to this fingerprint stops working.
        """
        new_value = str(uuid.uuid4())
        with self.engine.begin() as conn:
            existing = conn.execute(
                _tokens.select().where(
                    (_tokens.c.user_id == user_id)
                    & (_tokens.c.user_agent == agent.user_agent)
                    & (_tokens.c.user_real_ip == agent.user_real_ip)
                )
            ).fetchone()
            if existing is not None:
                conn.execute(
                    _tokens.update().where(_tokens.c.token == existing.token).values(token=new_value, exp=_to_iso(exp))
                )
            else:
                conn.execute(
                    _tokens.insert().values(
                        token=new_value,
                        exp=_to_iso(exp),
                        user_id=user_id,
                        user_agent=agent.user_agent,
                        user_real_ip=agent.user_real_ip,
                    )
                )
            row = conn.execute(_tokens.select().where(_tokens.c.token == new_value)).fetchone()
        return _row_to_token(row)

    def pop_token(self, token: str) -> Token | None:
        """Delete a token by value and return the row that was removed."""
        with self.engine.begin() as conn:
            row = conn.execute(_tokens.select().where(_tokens.c.token == token)).fetchone()
            if row is None:
                return None
            conn.execute(_tokens.delete().where(_tokens.c.token == token))
        return _row_to_token(row)

    def delete_token(self, token: str) -> int:
        """Delete every row with this token value. Returns the number removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_tokens.delete().where(_tokens.c.token == token))
        return result.rowcount

    def delete_user_tokens(self, user_id: str) -> int:
        """Delete all refresh tokens owned by a user. Returns the number removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_tokens.delete().where(_tokens.c.user_id == user_id))
        return result.rowcount

    def get_token_owner(self, token: str) -> str | None:
        """Return the user_id that owns a token value, or None."""
        with self.engine.connect() as conn:
            return conn.execute(
                _tokens.select().with_only_columns(_tokens.c.user_id).where(_tokens.c.token == token)
            ).scalar()

    def purge_expired_tokens(self) -> int:
        """Delete all tokens whose exp is in the past. Returns number of rows removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_tokens.delete().where(_tokens.c.exp < _now_iso()))
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        roles=json.loads(row.roles) if row.roles else [Role.USER.value],
        provider=row.provider,
        is_blocked=bool(row.is_blocked),
        is_confirmed=bool(row.is_confirmed),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_token(row) -> Token:
    return Token(
        token=row.token,
        exp=datetime.fromisoformat(row.exp),
        user_id=row.user_id,
        user_agent=row.user_agent,
        user_real_ip=row.user_real_ip,
    )
