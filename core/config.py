"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for SafeEd happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Two layers:
  Settings (BaseSettings): the mutable, env-driven view of configuration.
      Field names map to env var names (e.g. secret_key -> SECRET_KEY).

  AuthConfig (frozen dataclass): the immutable struct the auth core is
      built from. Constructed once at process start from Settings plus the
      fixed security constants below, then passed by reference into the
      token service and lockout policy. Core logic never calls
      get_settings() itself.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing
       relies on key entropy -- a short key weakens every issued token.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

  The bcrypt cost factor, lockout threshold and lockout window are constants,
  not settings. They are part of the security contract and are not meant to
  be tuned per deployment.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("safeed.config")

# ---------------------------------------------------------------------------
# Fixed security constants
# ---------------------------------------------------------------------------

BCRYPT_ROUNDS = 12
MAX_LOGIN_ATTEMPTS = 5
LOCKOUT_DURATION = timedelta(minutes=30)

TOKEN_ISSUER = "safeed-api"
TOKEN_AUDIENCE = "safeed-client"
TOKEN_ALGORITHM = "HS256"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = ""  # empty = SQLite file next to auth/store.py

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    # Default 7 days.
    token_expire_seconds: int = 7 * 24 * 60 * 60

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:8080"]
    allowed_hosts: list[str] = ["*"]

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    login_rate_limit: str = "10/hour"
    register_rate_limit: str = "5/15 minutes"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.token_expire_seconds <= 0:
            raise ValueError("TOKEN_EXPIRE_SECONDS must be positive.")
        return self


@dataclass(frozen=True)
class AuthConfig:
    """Immutable configuration for the auth core.

    Built once by the application lifespan (or a test fixture) and shared by
    reference. Only secret_key and token_lifetime come from the environment;
    everything else defaults to the fixed constants above.
    """

    secret_key: str
    token_lifetime: timedelta = timedelta(days=7)
    token_issuer: str = TOKEN_ISSUER
    token_audience: str = TOKEN_AUDIENCE
    token_algorithm: str = TOKEN_ALGORITHM
    max_login_attempts: int = MAX_LOGIN_ATTEMPTS
    lockout_duration: timedelta = LOCKOUT_DURATION

    @classmethod
    def from_settings(cls, settings: Settings) -> "AuthConfig":
        return cls(
            secret_key=settings.secret_key,
            token_lifetime=timedelta(seconds=settings.token_expire_seconds),
        )


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    This is the official FastAPI pattern for config (see FastAPI docs /advanced/settings/).

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
