# OAuth2 protocol schemas.
# Created: 2026-10-18

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from quoteauth.api.v1.schemas.common import CamelModel


class AuthorizeRequest(CamelModel):
    """Resource owner's approval of an authorization request."""

    client_id: str = Field(..., alias="clientId")
    redirect_uri: str = Field(..., alias="redirectUri")
    response_type: str = Field(..., alias="responseType")
    state: str | None = None
    scope: str | None = None
    code_challenge: str | None = Field(default=None, alias="codeChallenge")
    code_challenge_method: str | None = Field(default=None, alias="codeChallengeMethod")


class AuthorizeResponse(CamelModel):
    redirect_url: str = Field(..., alias="redirectUrl")


class TokenRequest(CamelModel):
    """Token exchange or refresh request (client credentials in the body)."""

    grant_type: str = Field(..., alias="grantType")
    client_id: str = Field(..., alias="clientId")
    client_secret: str = Field(..., alias="clientSecret")
    code: str | None = None
    refresh_token: str | None = Field(default=None, alias="refreshToken")
    redirect_uri: str | None = Field(default=None, alias="redirectUri")
    code_verifier: str | None = Field(default=None, alias="codeVerifier")


class TokenResponse(BaseModel):
    """OAuth2 token response."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_token: str
    scope: str


class RevokeRequest(BaseModel):
    """Token revocation request."""

    token: str
    token_type_hint: str | None = None


class AuthorizedAppSummary(CamelModel):
    id: str
    name: str
    client_id: str = Field(..., alias="clientId")
    description: str | None = None


class AuthorizedApp(CamelModel):
    """An app the current user has granted access to."""

    app: AuthorizedAppSummary
    scopes: list[str]
    authorized_at: datetime = Field(..., alias="authorizedAt")


class TokenIdentity(CamelModel):
    user_id: str = Field(..., alias="userId")
    client_id: str = Field(..., alias="clientId")
    scopes: list[str]
