"""
core/config.py -- Auth core settings, read from the environment by pydantic-settings.

Every module that needs configuration imports get_settings(); nothing else
reads os.environ. Field names map one-to-one to upper-case env vars
(access_token_expire_ms -> ACCESS_TOKEN_EXPIRE_MS), and a .env file in the
working directory is honoured when present.

get_settings() is cached, so the signing secret is resolved exactly once per
process. The TokenCodec receives it at startup and it is never re-read or
mutated afterwards.

Signing secret rules:
  [M6] Fewer than 32 characters is rejected. HS256 is only as strong as the
       key it is given.
  [M7] Without DEBUG, a missing SECRET_KEY stops startup. A key generated on
       the fly would log every user out on each restart.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from datetime import timedelta
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("adminportal.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'adminportal_auth.db'}"


class Settings(BaseSettings):
    """Auth core configuration. Every field has a default except the signing secret,
    which resolve_signing_secret() fills in or rejects.
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
    # "" means unset; never visible after validation.
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Token lifetimes (milliseconds)
    # ------------------------------------------------------------------

    access_token_expire_ms: int = Field(default=3_600_000, gt=0)  # 60 minutes
    refresh_token_expire_ms: int = Field(default=604_800_000, gt=0)  # 7 days

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    # Host header allow-list for TrustedHostMiddleware. JSON list in the env
    # var, e.g. ALLOWED_HOSTS='["portal.example.com"]'.
    allowed_hosts: list[str] = Field(default_factory=lambda: ["localhost", "127.0.0.1", "*.localhost"])
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Registration and maintenance
    # ------------------------------------------------------------------

    self_registration_enabled: bool = True
    # Background sweep of expired and revoked refresh tokens. 0 disables it.
    token_sweep_interval_seconds: int = Field(default=6 * 60 * 60, ge=0)

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def access_token_lifetime(self) -> timedelta:
        return timedelta(milliseconds=self.access_token_expire_ms)

    @property
    def refresh_token_lifetime(self) -> timedelta:
        return timedelta(milliseconds=self.refresh_token_expire_ms)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def resolve_signing_secret(self) -> "Settings":
        """Apply [M6][M7]: generate a throwaway key under DEBUG, else require one."""
        if not self.secret_key:
            if not self.debug:
                raise ValueError(
                    "SECRET_KEY is not set. Configure a signing secret of at least 32 "
                    "characters, or set DEBUG=true for a throwaway development key."
                )
            self.secret_key = secrets.token_hex(32)
            logger.warning("DEBUG mode: generated a throwaway SECRET_KEY; tokens die with this process.")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Process-wide Settings. Tests that change env vars call get_settings.cache_clear()."""
    return Settings()
