# OAuth2 authorization server façade.
# Created: 2026-10-18
#
# Wires the app registry, code issuer and token service over one storage
# backend and exposes the operations the HTTP layer calls.

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from quoteauth.oauth2.apps import AppRegistry
from quoteauth.oauth2.codes import AuthorizationCodeIssuer
from quoteauth.oauth2.errors import OAuthFailure
from quoteauth.oauth2.models import RegisteredApp
from quoteauth.oauth2.storage import FileOAuthStorage, MemoryOAuthStorage, OAuthStorage
from quoteauth.oauth2.tokens import AccessIdentity, TokenService
from quoteauth.security.claims_tokens import ClaimsTokenSigner

logger = logging.getLogger(__name__)


def _default_storage() -> OAuthStorage:
    from quoteauth.config import get_settings

    path = get_settings().storage_path
    if path is None:
        logger.info("No storage_path configured; OAuth records are kept in memory")
        return MemoryOAuthStorage()
    return FileOAuthStorage(path.expanduser())


class AuthorizationServer:
    """Authorization-code + refresh-token server with optional PKCE."""

    def __init__(
        self,
        storage: OAuthStorage | None = None,
        signer: ClaimsTokenSigner | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.storage = storage if storage is not None else _default_storage()
        self.apps = AppRegistry(self.storage, clock)
        self.codes = AuthorizationCodeIssuer(self.apps, clock)
        self.tokens = TokenService(self.apps, self.codes, signer, clock)

    # App management (owner-scoped)

    def create_app(
        self, owner_user_id: str, name: str, redirect_uri: str, description: str | None = None
    ) -> tuple[RegisteredApp, str]:
        return self.apps.create(owner_user_id, name, redirect_uri, description)

    def list_apps(self, owner_user_id: str) -> list[RegisteredApp]:
        return self.apps.list_apps(owner_user_id)

    def get_app(self, owner_user_id: str, app_id: str) -> tuple[RegisteredApp | None, OAuthFailure | None]:
        return self.apps.get(owner_user_id, app_id)

    def delete_app(self, owner_user_id: str, app_id: str) -> OAuthFailure | None:
        return self.apps.delete(owner_user_id, app_id)

    def regenerate_secret(self, owner_user_id: str, app_id: str) -> tuple[str | None, OAuthFailure | None]:
        return self.apps.regenerate_secret(owner_user_id, app_id)

    # Protocol

    def authorize(
        self,
        client_id: str,
        redirect_uri: str,
        response_type: str,
        user_id: str,
        scope: str | None = None,
        state: str | None = None,
        code_challenge: str | None = None,
        code_challenge_method: str | None = None,
    ) -> tuple[str | None, OAuthFailure | None]:
        return self.codes.authorize(
            client_id=client_id,
            redirect_uri=redirect_uri,
            response_type=response_type,
            user_id=user_id,
            scope=scope,
            state=state,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
        )

    def token(
        self,
        grant_type: str,
        client_id: str | None,
        client_secret: str | None,
        code: str | None = None,
        refresh_token: str | None = None,
        redirect_uri: str | None = None,
        code_verifier: str | None = None,
    ) -> tuple[dict | None, OAuthFailure | None]:
        return self.tokens.exchange(
            grant_type=grant_type,
            client_id=client_id,
            client_secret=client_secret,
            code=code,
            refresh_token=refresh_token,
            redirect_uri=redirect_uri,
            code_verifier=code_verifier,
        )

    def revoke(self, token: str, token_type_hint: str | None = None) -> bool:
        return self.tokens.revoke(token, token_type_hint)

    def validate(self, access_token: str) -> tuple[AccessIdentity | None, OAuthFailure | None]:
        return self.tokens.validate(access_token)

    # Consent management (resource owner)

    def list_authorized_apps(self, user_id: str) -> list[dict]:
        return self.tokens.list_authorized_apps(user_id)

    def revoke_app_authorization(self, user_id: str, app_id: str) -> None:
        self.tokens.revoke_app_authorization(user_id, app_id)

    def purge_expired(self) -> tuple[int, int]:
        return self.tokens.purge_expired()


# Singleton
_server: AuthorizationServer | None = None


def get_oauth_server() -> AuthorizationServer:
    global _server
    if _server is None:
        _server = AuthorizationServer()
    return _server


def reset_oauth_server() -> None:
    global _server
    _server = None
