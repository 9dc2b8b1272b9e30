"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads happen here. No module should call os.getenv()
directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET). Type coercion and validation are built in.

  @model_validator(mode="after"): DEBUG-conditional JWT_SECRET policy. Dev
      mode generates a key with a warning, production mode refuses to start
      without one.

Duration fields (jwt_exp, refresh_token_exp, cache_user_expires) use the short
"<int><unit>" form, e.g. "15m", "1h", "30d". They are parsed at startup so a
typo fails fast instead of on the first login.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
users/, mailer/, or cache/.
"""

import logging
import secrets
from datetime import timedelta
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.durations import parse_duration

logger = logging.getLogger("lanterra.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the "not configured" sentinel; see validate_jwt_secret().
    jwt_secret: str = ""
    public_url: str = "http://localhost"

    # ------------------------------------------------------------------
    # Tokens and cookies
    # ------------------------------------------------------------------

    jwt_exp: str = "1h"
    refresh_token_exp: str = "30d"
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = "sqlite:///lanterra.db"
    cache_db_path: str = "lanterra_cache.db"
    cache_user_expires: str = "1h"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000"]

    # ------------------------------------------------------------------
    # Mail (optional -- empty username/server disables sending)
    # ------------------------------------------------------------------

    mail_username: str = ""
    mail_password: str = ""
    mail_from: str = ""
    mail_server: str = "smtp.gmail.com"
    mail_port: int = 587
    mail_starttls: bool = True
    mail_ssl_tls: bool = False

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("jwt_exp", "refresh_token_exp", "cache_user_expires")
    @classmethod
    def validate_duration(cls, v: str) -> str:
        parse_duration(v)
        return v

    @model_validator(mode="after")
    def validate_jwt_secret(self) -> "Settings":
        """Enforce the JWT_SECRET policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Issued tokens will not survive a restart.

        Production mode: refuse to start without JWT_SECRET.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.jwt_secret:
            if self.debug:
                self.jwt_secret = secrets.token_hex(32)
                logger.warning("Using auto-generated JWT_SECRET. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "JWT_SECRET is required in production mode. "
                    "Set JWT_SECRET in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.jwt_secret) < 32:
            raise ValueError("JWT_SECRET must be at least 32 characters.")
        return self

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def access_token_ttl(self) -> timedelta:
        return parse_duration(self.jwt_exp)

    @property
    def refresh_token_ttl(self) -> timedelta:
        return parse_duration(self.refresh_token_exp)

    @property
    def cache_user_ttl(self) -> int:
        """Cache TTL in whole seconds."""
        return int(parse_duration(self.cache_user_expires).total_seconds())

    @property
    def mail_enabled(self) -> bool:
        return bool(self.mail_username and self.mail_password and self.mail_server and self.mail_from)


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
