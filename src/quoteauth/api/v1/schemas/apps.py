# OAuth app registry schemas.
# Created: 2026-10-18

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from quoteauth.api.v1.schemas.common import CamelModel


class CreateAppRequest(CamelModel):
    """Register a new client application."""

    name: str = Field(..., min_length=1, max_length=100)
    redirect_uri: str = Field(..., alias="redirectUri", min_length=1, max_length=2048)
    description: str | None = Field(default=None, max_length=500)


class AppInfo(CamelModel):
    """Registered app (no secrets)."""

    id: str
    name: str
    description: str | None = None
    client_id: str = Field(..., alias="clientId")
    redirect_uri: str = Field(..., alias="redirectUri")
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")


class AppCreatedResponse(CamelModel):
    """Response when an app is registered; the secret is shown once."""

    id: str
    client_id: str = Field(..., alias="clientId")
    client_secret: str = Field(..., alias="clientSecret")
    redirect_uri: str = Field(..., alias="redirectUri")
    created_at: datetime = Field(..., alias="createdAt")


class SecretResponse(CamelModel):
    """Freshly rotated client secret, shown once."""

    client_secret: str = Field(..., alias="clientSecret")
