"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Gatekeeper happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_access_secret -> JWT_ACCESS_SECRET).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode generates the JWT secrets with a warning; production
      mode refuses to start without them.

Security notes:
  [M6] JWT secrets shorter than 32 chars are rejected outright.
  [M7] In production mode (DEBUG not set or false), a missing secret is a hard
       startup failure.
  [M8] The access and refresh secrets must differ. A shared secret would let a
       refresh token verify as an access token and vice versa.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or mail/.
"""

import logging
import secrets
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("gatekeeper.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent.parent / 'gatekeeper.db'}"


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
    database_url: str = _DEFAULT_DB_URL
    # Frontend origin: reset links point here and CORS allows it.
    client_url: str = "http://localhost:5173"
    # Host headers accepted by TrustedHostMiddleware. JSON list in the env var.
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured".
    jwt_access_secret: str = ""
    jwt_refresh_secret: str = ""
    access_token_expire_seconds: int = 3600  # 1 hour
    refresh_token_expire_seconds: int = 7 * 24 * 3600  # 7 days
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Passwords and one-shot codes
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    verification_ttl_seconds: int = 24 * 3600
    reset_ttl_seconds: int = 24 * 3600

    # ------------------------------------------------------------------
    # Mail (SMTP). Empty host means dev mode: messages are logged, not sent.
    # ------------------------------------------------------------------

    mail_host: str = ""
    mail_port: int = 587
    mail_username: str = ""
    mail_password: str = ""
    mail_from_address: str = ""
    mail_use_tls: bool = True
    mail_timeout_seconds: int = 30

    # ------------------------------------------------------------------
    # Rate limiting (limits-library notation)
    # ------------------------------------------------------------------

    signup_rate_limit: str = "3/15 minutes"
    login_rate_limit: str = "200/15 minutes"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_jwt_secrets(self) -> "Settings":
        """Enforce the JWT secret policy [M6] [M7] [M8].

        Dev mode (DEBUG=true): auto-generate any missing secret with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.
        """
        for name in ("jwt_access_secret", "jwt_refresh_secret"):
            value = getattr(self, name)
            if not value:
                if self.debug:
                    setattr(self, name, secrets.token_hex(32))
                    logger.warning(
                        "WARNING: Using auto-generated %s. Sessions will not persist across restarts.",
                        name.upper(),
                    )
                else:
                    raise ValueError(
                        f"{name.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
            elif len(value) < 32:
                raise ValueError(f"{name.upper()} must be at least 32 characters.")
        if self.jwt_access_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must be different.")
        return self

    @model_validator(mode="after")
    def validate_mail(self) -> "Settings":
        """A configured SMTP host needs a sender address to be usable."""
        if self.mail_host and not self.mail_from_address:
            raise ValueError("MAIL_FROM_ADDRESS is required when MAIL_HOST is set.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()


def now_utc() -> datetime:
    """Timezone-aware current time. All expiry checks go through here."""
    return datetime.now(timezone.utc)


def now_iso() -> str:
    return now_utc().isoformat()
