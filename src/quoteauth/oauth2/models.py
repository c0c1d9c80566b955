# OAuth2 data models.
# Created: 2026-10-18
#
# Plaintext secrets, codes and tokens never appear here, only SHA-256 digests.

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime


def _utcnow() -> datetime:
    return datetime.now(UTC)


def new_record_id() -> str:
    return secrets.token_hex(12)


@dataclass
class RegisteredApp:
    """Client application registered by a workspace user."""

    id: str
    owner_user_id: str
    name: str
    client_id: str
    client_secret_hash: str
    redirect_uri: str
    description: str | None = None
    is_active: bool = True
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


@dataclass
class AuthorizationCode:
    """Short-lived, single-use code bound to an (app, user, redirect_uri)."""

    id: str
    app_id: str
    user_id: str
    code_hash: str
    redirect_uri: str
    scopes: list[str]
    expires_at: datetime
    code_challenge: str | None = None
    code_challenge_method: str | None = None  # "S256" or "plain"
    used_at: datetime | None = None
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class OAuthToken:
    """One issued access + refresh token pair."""

    id: str
    app_id: str
    user_id: str
    scopes: list[str]
    access_token_hash: str
    refresh_token_hash: str
    expires_at: datetime
    refresh_expires_at: datetime
    revoked_at: datetime | None = None
    created_at: datetime = field(default_factory=_utcnow)

    def is_active(self, now: datetime) -> bool:
        return self.revoked_at is None and self.expires_at > now

    def is_refreshable(self, now: datetime) -> bool:
        return self.revoked_at is None and self.refresh_expires_at > now
