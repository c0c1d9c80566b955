# OAuth2 router: authorize, token, revoke, authorized apps.
# Created: 2026-10-18

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from quoteauth.api.deps import get_current_user, require_oauth_scope
from quoteauth.api.v1.schemas.common import SuccessResponse
from quoteauth.api.v1.schemas.oauth2 import (
    AuthorizedApp,
    AuthorizedAppSummary,
    AuthorizeRequest,
    AuthorizeResponse,
    RevokeRequest,
    TokenIdentity,
    TokenRequest,
    TokenResponse,
)
from quoteauth.oauth2.errors import OAuthFailure
from quoteauth.oauth2.tokens import AccessIdentity

logger = logging.getLogger(__name__)

router = APIRouter(tags=["OAuth2"])

# Token responses must never be cached (RFC 6749 §5.1).
_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def _error_response(error: OAuthFailure, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(status_code=error.http_status, content=error.as_dict(), headers=headers)


def _too_many_requests() -> JSONResponse:
    return JSONResponse(status_code=429, content={"detail": "Too many requests"})


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@router.post("/oauth/authorize", response_model=AuthorizeResponse)
async def authorize(body: AuthorizeRequest, user_id: str = Depends(get_current_user)):
    """Approve an authorization request on behalf of the signed-in user."""
    from quoteauth.oauth2.server import get_oauth_server

    redirect_url, error = get_oauth_server().authorize(
        client_id=body.client_id,
        redirect_uri=body.redirect_uri,
        response_type=body.response_type,
        user_id=user_id,
        scope=body.scope,
        state=body.state,
        code_challenge=body.code_challenge,
        code_challenge_method=body.code_challenge_method,
    )
    if error:
        return _error_response(error)
    return AuthorizeResponse(redirect_url=redirect_url)


@router.post("/oauth/token", response_model=TokenResponse)
async def token_exchange(body: TokenRequest, request: Request):
    """Exchange an authorization code or refresh token for a token pair."""
    from quoteauth.oauth2.server import get_oauth_server
    from quoteauth.security.rate_limiter import token_limiter

    if not token_limiter.allow(_client_ip(request)):
        return _too_many_requests()

    result, error = get_oauth_server().token(
        grant_type=body.grant_type,
        client_id=body.client_id,
        client_secret=body.client_secret,
        code=body.code,
        refresh_token=body.refresh_token,
        redirect_uri=body.redirect_uri,
        code_verifier=body.code_verifier,
    )
    if error:
        logger.info("Token request from client %s failed: %s", body.client_id, error.kind.value)
        return _error_response(error, headers=_NO_STORE)
    return JSONResponse(content=TokenResponse(**result).model_dump(), headers=_NO_STORE)


@router.post("/oauth/revoke", response_model=SuccessResponse)
async def revoke_token(body: RevokeRequest, request: Request):
    """Revoke an access or refresh token. Unknown tokens also report success."""
    from quoteauth.oauth2.server import get_oauth_server
    from quoteauth.security.rate_limiter import revoke_limiter

    if not revoke_limiter.allow(_client_ip(request)):
        return _too_many_requests()

    get_oauth_server().revoke(body.token, body.token_type_hint)
    return SuccessResponse()


@router.get("/oauth/authorized-apps", response_model=list[AuthorizedApp])
async def list_authorized_apps(user_id: str = Depends(get_current_user)):
    """Apps the signed-in user has granted access to."""
    from quoteauth.oauth2.server import get_oauth_server

    return [
        AuthorizedApp(
            app=AuthorizedAppSummary(
                id=entry["app"].id,
                name=entry["app"].name,
                client_id=entry["app"].client_id,
                description=entry["app"].description,
            ),
            scopes=entry["scopes"],
            authorized_at=entry["authorized_at"],
        )
        for entry in get_oauth_server().list_authorized_apps(user_id)
    ]


@router.delete("/oauth/authorized-apps/{app_id}", response_model=SuccessResponse)
async def revoke_authorized_app(app_id: str, user_id: str = Depends(get_current_user)):
    """Withdraw consent: revoke every token and pending code for this app."""
    from quoteauth.oauth2.server import get_oauth_server

    get_oauth_server().revoke_app_authorization(user_id, app_id)
    return SuccessResponse()


@router.get("/oauth/me", response_model=TokenIdentity)
async def token_identity(identity: AccessIdentity = Depends(require_oauth_scope())):
    """Echo the identity behind an OAuth access token."""
    return TokenIdentity(
        user_id=identity.user_id,
        client_id=identity.client_id,
        scopes=list(identity.scopes),
    )
