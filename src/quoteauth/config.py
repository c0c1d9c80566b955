# Settings for the authorization server.
# Created: 2026-10-18
#
# Loaded from QUOTEAUTH_* environment variables (or a .env file).
# Missing signing keys fall back to a random per-process value.

from __future__ import annotations

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_MIN_SECRET_LENGTH = 32


def _random_secret() -> SecretStr:
    return SecretStr(secrets.token_urlsafe(48))


class Settings(BaseSettings):
    """Authorization server settings."""

    model_config = SettingsConfigDict(
        env_prefix="QUOTEAUTH_",
        env_file=".env",
        extra="ignore",
    )

    jwt_secret: SecretStr | None = None
    jwt_algorithm: str = "HS256"
    session_secret: SecretStr = Field(default_factory=_random_secret)
    session_token_ttl_hours: int = 24

    storage_path: Path | None = None
    audit_log_path: Path | None = None

    api_host: str = "127.0.0.1"
    api_port: int = 8890
    cors_allowed_origins: list[str] = Field(default_factory=list)
    log_level: str = "INFO"

    @field_validator("jwt_secret")
    @classmethod
    def _check_jwt_secret(cls, v: SecretStr | None) -> SecretStr | None:
        if v is not None and len(v.get_secret_value()) < _MIN_SECRET_LENGTH:
            raise ValueError(
                f"jwt_secret must be at least {_MIN_SECRET_LENGTH} characters long"
            )
        return v

    def signing_key(self) -> str:
        """Return the access-token signing key, generating one if unset."""
        if self.jwt_secret is None:
            logger.warning(
                "QUOTEAUTH_JWT_SECRET is not set; using a random key. "
                "Access tokens will not survive a restart."
            )
            self.jwt_secret = _random_secret()
        return self.jwt_secret.get_secret_value()


@lru_cache
def get_settings() -> Settings:
    return Settings()


def reset_settings() -> None:
    """Drop the cached settings (for testing)."""
    get_settings.cache_clear()
