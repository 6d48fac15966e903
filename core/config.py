"""
core/config.py -- authkeep settings, read once from the environment or .env.

get_settings() is the only place the process looks at environment variables;
everything else receives a Settings instance (or values taken from one).

Lifetimes live here rather than in the token code:
  ACCESS_TOKEN_EXPIRE_SECONDS      default session (7 days)
  REMEMBER_ME_EXPIRE_SECONDS       remember-me session (30 days, must be longer)
  REFRESH_TOKEN_EXPIRE_SECONDS     refresh token (30 days)
  VERIFICATION_TOKEN_TTL_SECONDS   email verification link (24 hours)
  RESET_TOKEN_TTL_SECONDS          password reset link (1 hour)

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected. HS256 session tokens are
       only as strong as the key.

  [M7] Without DEBUG, a missing SECRET_KEY stops startup. A per-process random
       key would invalidate every session on restart and differ between
       replicas.

Layer rule: core/ may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authkeep.config")


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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = "sqlite:///authkeep.db"

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    # bcrypt cost factor. 12 in production; tests drop to 4 (bcrypt minimum).
    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Session tokens
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = 7 * 24 * 3600
    remember_me_expire_seconds: int = 30 * 24 * 3600
    refresh_token_expire_seconds: int = 30 * 24 * 3600
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # One-time tokens
    # ------------------------------------------------------------------

    verification_token_ttl_seconds: int = 24 * 3600
    reset_token_ttl_seconds: int = 3600
    token_purge_interval_seconds: int = 6 * 3600

    # ------------------------------------------------------------------
    # Outbound email
    # ------------------------------------------------------------------

    client_url: str = "http://localhost:3000"
    mail_sender: str = "no-reply@authkeep.local"
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    login_rate_limit: str = "10/minute"
    default_rate_limit: str = "100/15minutes"
    cors_origins: list[str] = ["http://localhost:3000"]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Sessions will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_session_lifetimes(self) -> "Settings":
        """Reject a remember-me lifetime that is not longer than the default session."""
        if self.remember_me_expire_seconds <= self.access_token_expire_seconds:
            raise ValueError("REMEMBER_ME_EXPIRE_SECONDS must exceed ACCESS_TOKEN_EXPIRE_SECONDS.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
