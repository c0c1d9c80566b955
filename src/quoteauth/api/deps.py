# Shared FastAPI dependencies for the API layer.
# Created: 2026-10-18

from __future__ import annotations

from fastapi import HTTPException, Request

from quoteauth.oauth2.tokens import AccessIdentity


def _bearer(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


async def get_current_user(request: Request) -> str:
    """Resolve the signed-in workspace user from a session bearer token.

    Usage::

        @router.get("/apps")
        async def list_apps(user_id: str = Depends(get_current_user)): ...
    """
    from quoteauth.config import get_settings
    from quoteauth.security.session_tokens import verify_session_token

    token = _bearer(request)
    if token is None:
        raise HTTPException(status_code=401, detail="Not authenticated")

    secret = get_settings().session_secret.get_secret_value()
    user_id = verify_session_token(token, secret)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid or expired session")
    return user_id


def require_oauth_scope(*scopes: str):
    """FastAPI dependency for resource endpoints called by third-party apps.

    Validates the OAuth access token in the Authorization header (signature,
    expiry, type and revocation) and, when *scopes* are given, requires the
    token to carry at least one of them. Returns the AccessIdentity.
    """

    async def _check(request: Request) -> AccessIdentity:
        from quoteauth.oauth2.server import get_oauth_server

        token = _bearer(request)
        if token is None:
            raise HTTPException(
                status_code=401,
                detail="Missing access token",
                headers={"WWW-Authenticate": "Bearer"},
            )

        identity, error = get_oauth_server().validate(token)
        if error:
            raise HTTPException(
                status_code=error.http_status,
                detail=error.description,
                headers={"WWW-Authenticate": 'Bearer error="invalid_token"'},
            )

        required = set(scopes)
        if required and not required & set(identity.scopes):
            raise HTTPException(
                status_code=403,
                detail=f"Access token missing required scope: {' or '.join(sorted(required))}",
            )
        return identity

    return _check
