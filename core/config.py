"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for TeamGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. Settings
      are treated as immutable after startup.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode generates a signing key with a warning; production
      mode refuses to start without one.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing and
       the HMAC used for recovery/confirmation token hashes both rely on it.

  [M7] Outside DEBUG mode a missing SECRET_KEY is a hard startup failure.
       Rotating the key invalidates every outstanding session token and every
       pending recovery, OTP, and confirmation token.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or teams/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("teamgate.config")


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
    # Production mode turns on the Secure cookie attribute.
    production: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = "sqlite:///teamgate.db"
    # Base URL of the front-end; confirmation and reset links point here.
    frontend_url: str = "http://localhost:3000"

    # ------------------------------------------------------------------
    # Sessions and passwords
    # ------------------------------------------------------------------

    token_expire_seconds: int = Field(default=3600, gt=0)
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # ------------------------------------------------------------------
    # MFA
    # ------------------------------------------------------------------

    totp_issuer: str = "TeamGate"
    # Accepted clock drift in 30-second steps on either side of "now".
    totp_window: int = Field(default=2, ge=0, le=10)

    # ------------------------------------------------------------------
    # Single-use token lifetimes (three independent TTL classes)
    # ------------------------------------------------------------------

    reset_token_ttl_seconds: int = Field(default=3600, gt=0)
    otp_ttl_seconds: int = Field(default=300, gt=0)
    confirmation_token_ttl_seconds: int = Field(default=900, gt=0)

    # ------------------------------------------------------------------
    # Outbound email
    # ------------------------------------------------------------------

    # Empty host means "log instead of sending" (development).
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    email_from: str = "no-reply@teamgate.local"
    notify_max_attempts: int = Field(default=3, ge=1)
    notify_max_delay_seconds: float = Field(default=2.0, gt=0)

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    # Public routes that email or consume tokens: reset, send-otp, confirm-login
    recovery_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Otherwise: refuse to start if SECRET_KEY is missing.

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
                    "SECRET_KEY is required outside debug mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
