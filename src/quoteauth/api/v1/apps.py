# OAuth app registry router: CRUD for the signed-in user's client apps.
# Created: 2026-10-18

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from quoteauth.api.deps import get_current_user
from quoteauth.api.v1.schemas.apps import (
    AppCreatedResponse,
    AppInfo,
    CreateAppRequest,
    SecretResponse,
)
from quoteauth.api.v1.schemas.common import SuccessResponse
from quoteauth.oauth2.models import RegisteredApp

logger = logging.getLogger(__name__)

router = APIRouter(tags=["OAuth Apps"])


def _app_info(app: RegisteredApp) -> AppInfo:
    return AppInfo(
        id=app.id,
        name=app.name,
        description=app.description,
        client_id=app.client_id,
        redirect_uri=app.redirect_uri,
        created_at=app.created_at,
        updated_at=app.updated_at,
    )


@router.post("/oauth/apps", response_model=AppCreatedResponse)
async def create_app(body: CreateAppRequest, user_id: str = Depends(get_current_user)):
    """Register a client app. The client secret is returned only once."""
    from quoteauth.oauth2.server import get_oauth_server

    app, secret = get_oauth_server().create_app(
        owner_user_id=user_id,
        name=body.name,
        redirect_uri=body.redirect_uri,
        description=body.description,
    )
    return AppCreatedResponse(
        id=app.id,
        client_id=app.client_id,
        client_secret=secret,
        redirect_uri=app.redirect_uri,
        created_at=app.created_at,
    )


@router.get("/oauth/apps", response_model=list[AppInfo])
async def list_apps(user_id: str = Depends(get_current_user)):
    """List the current user's apps, newest first (no secrets exposed)."""
    from quoteauth.oauth2.server import get_oauth_server

    return [_app_info(a) for a in get_oauth_server().list_apps(user_id)]


@router.get("/oauth/apps/{app_id}", response_model=AppInfo)
async def get_app(app_id: str, user_id: str = Depends(get_current_user)):
    from quoteauth.oauth2.server import get_oauth_server

    app, error = get_oauth_server().get_app(user_id, app_id)
    if error:
        return JSONResponse(status_code=error.http_status, content=error.as_dict())
    return _app_info(app)


@router.delete("/oauth/apps/{app_id}", response_model=SuccessResponse)
async def delete_app(app_id: str, user_id: str = Depends(get_current_user)):
    """Delete an app and revoke everything issued under it."""
    from quoteauth.oauth2.server import get_oauth_server

    error = get_oauth_server().delete_app(user_id, app_id)
    if error:
        return JSONResponse(status_code=error.http_status, content=error.as_dict())
    return SuccessResponse()


@router.post("/oauth/apps/{app_id}/regenerate-secret", response_model=SecretResponse)
async def regenerate_secret(app_id: str, user_id: str = Depends(get_current_user)):
    """Rotate the client secret. The previous secret stops working immediately."""
    from quoteauth.oauth2.server import get_oauth_server

    secret, error = get_oauth_server().regenerate_secret(user_id, app_id)
    if error:
        return JSONResponse(status_code=error.http_status, content=error.as_dict())
    return SecretResponse(client_secret=secret)
