# Token exchange, refresh rotation, validation and revocation.
# Created: 2026-10-18
#
# Access tokens are signed claims (1 hour); refresh tokens are opaque
# 64-hex strings (30 days). Every issued pair is backed by an OAuthToken
# record holding both hashes. A signed token alone is never enough: the
# backing record must still be active.

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from quoteauth.oauth2.apps import AppRegistry
from quoteauth.oauth2.codes import AuthorizationCodeIssuer
from quoteauth.oauth2.errors import (
    ErrorKind,
    OAuthFailure,
    invalid_client,
    invalid_grant,
    invalid_request,
    unauthorized,
)
from quoteauth.oauth2.models import OAuthToken, RegisteredApp, new_record_id
from quoteauth.security.audit import get_audit_logger
from quoteauth.security.claims_tokens import AccessClaims, ClaimsTokenSigner
from quoteauth.security.hashing import generate_secret, hash_secret, verify_secret

logger = logging.getLogger(__name__)

# Token lifetimes
ACCESS_TOKEN_TTL = timedelta(hours=1)
REFRESH_TOKEN_TTL = timedelta(days=30)

_INVALID_REFRESH = "Invalid or expired refresh token"


@dataclass(frozen=True)
class AccessIdentity:
    """Who a validated access token speaks for."""

    user_id: str
    client_id: str
    scopes: tuple[str, ...]


class TokenService:
    """Issues token pairs for codes and refresh tokens."""

    def __init__(
        self,
        apps: AppRegistry,
        codes: AuthorizationCodeIssuer,
        signer: ClaimsTokenSigner | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.apps = apps
        self.codes = codes
        self.storage = apps.storage
        self.signer = signer or ClaimsTokenSigner()
        self._clock = clock or (lambda: datetime.now(UTC))

    # --- grants -------------------------------------------------------------

    def authenticate_client(
        self, client_id: str | None, client_secret: str | None
    ) -> tuple[RegisteredApp | None, OAuthFailure | None]:
        app = self.apps.resolve_client(client_id) if client_id else None
        if app is None or not client_secret:
            return None, invalid_client()
        if not verify_secret(client_secret, app.client_secret_hash):
            return None, invalid_client()
        return app, None

    def exchange(
        self,
        grant_type: str,
        client_id: str | None,
        client_secret: str | None,
        code: str | None = None,
        refresh_token: str | None = None,
        redirect_uri: str | None = None,
        code_verifier: str | None = None,
    ) -> tuple[dict | None, OAuthFailure | None]:
        """Run the token endpoint for *grant_type*.

        Returns (token_response, error).
        """
        app, error = self.authenticate_client(client_id, client_secret)
        if error:
            return None, error

        if grant_type == "authorization_code":
            return self._authorization_code_grant(app, code, redirect_uri, code_verifier)
        if grant_type == "refresh_token":
            return self._refresh_token_grant(app, refresh_token)
        return None, OAuthFailure(ErrorKind.UNSUPPORTED_GRANT_TYPE, "Unsupported grant_type")

    def _authorization_code_grant(
        self,
        app: RegisteredApp,
        code: str | None,
        redirect_uri: str | None,
        code_verifier: str | None,
    ) -> tuple[dict | None, OAuthFailure | None]:
        record, error = self.codes.redeem(app, code, redirect_uri, code_verifier)
        if error:
            return None, error

        result = self._issue(app, record.user_id, record.scopes)
        get_audit_logger().log_oauth_event(
            action="token_issued",
            actor=app.client_id,
            target=f"user:{record.user_id}",
            scopes=record.scopes,
        )
        return result, None

    def _refresh_token_grant(
        self, app: RegisteredApp, refresh_token: str | None
    ) -> tuple[dict | None, OAuthFailure | None]:
        if not refresh_token:
            return None, invalid_request("Missing refresh_token")

        now = self._clock()
        old = self.storage.find_refreshable_token(app.id, hash_secret(refresh_token), now)
        if old is None:
            return None, invalid_grant(_INVALID_REFRESH, status_code=401)

        # Revoke before issuing: if issuance fails the old token stays dead.
        if not self.storage.revoke_token(old.id, now):
            logger.info("Refresh token %s already rotated (concurrent refresh)", old.id)
            return None, invalid_grant(_INVALID_REFRESH, status_code=401)

        result = self._issue(app, old.user_id, old.scopes)
        get_audit_logger().log_oauth_event(
            action="token_refreshed",
            actor=app.client_id,
            target=f"user:{old.user_id}",
            previous=old.id,
        )
        return result, None

    def _issue(self, app: RegisteredApp, user_id: str, scopes: list[str]) -> dict:
        access_token = self.signer.issue(
            AccessClaims(subject=user_id, client_id=app.client_id, scopes=tuple(scopes)),
            ACCESS_TOKEN_TTL,
        )
        refresh_token = generate_secret(32)

        now = self._clock()
        record = OAuthToken(
            id=new_record_id(),
            app_id=app.id,
            user_id=user_id,
            scopes=list(scopes),
            access_token_hash=hash_secret(access_token),
            refresh_token_hash=hash_secret(refresh_token),
            expires_at=now + ACCESS_TOKEN_TTL,
            refresh_expires_at=now + REFRESH_TOKEN_TTL,
            created_at=now,
        )
        self.storage.add_token(record)
        logger.debug("Issued token %s for app %s, user %s", record.id, app.id, user_id)

        return {
            "access_token": access_token,
            "token_type": "Bearer",
            "expires_in": int(ACCESS_TOKEN_TTL.total_seconds()),
            "refresh_token": refresh_token,
            "scope": " ".join(scopes),
        }

    # --- validation & revocation -------------------------------------------

    def validate(self, access_token: str) -> tuple[AccessIdentity | None, OAuthFailure | None]:
        """Check signature, expiry, type and the backing record."""
        claims, reason = self.signer.verify(access_token)
        if claims is None:
            logger.debug("Access token rejected: %s", reason)
            return None, unauthorized()

        record = self.storage.find_active_token(hash_secret(access_token), self._clock())
        if record is None or record.user_id != claims.subject:
            logger.debug("Access token rejected: revoked or unknown")
            return None, unauthorized()
        app = self.storage.get_app(record.app_id)
        if app is None or app.client_id != claims.client_id:
            logger.debug("Access token rejected: client mismatch for record %s", record.id)
            return None, unauthorized()

        return AccessIdentity(claims.subject, claims.client_id, claims.scopes), None

    def revoke(self, token: str, token_type_hint: str | None = None) -> bool:
        """Revoke by access (default) or refresh token. Always reports success."""
        now = self._clock()
        digest = hash_secret(token)
        if token_type_hint == "refresh_token":
            count = self.storage.revoke_by_refresh_hash(digest, now)
        else:
            count = self.storage.revoke_by_access_hash(digest, now)
        if count:
            get_audit_logger().log_oauth_event(
                action="token_revoked",
                actor="anonymous",
                target="token",
                hint=token_type_hint or "access_token",
            )
        return True

    def revoke_app_authorization(self, user_id: str, app_id: str) -> None:
        """Withdraw a user's consent: revoke all tokens and drop pending codes."""
        revoked = self.storage.revoke_tokens_for(app_id, self._clock(), user_id=user_id)
        discarded = self.storage.delete_codes(app_id, user_id=user_id)
        logger.info(
            "User %s revoked app %s: %d tokens, %d codes", user_id, app_id, revoked, discarded
        )
        get_audit_logger().log_oauth_event(
            action="authorization_revoked",
            actor=user_id,
            target=f"app:{app_id}",
            tokens_revoked=revoked,
        )

    def list_authorized_apps(self, user_id: str) -> list[dict]:
        """Apps holding at least one live grant from *user_id*, newest grant first."""
        now = self._clock()
        latest: dict[str, OAuthToken] = {}
        for token in self.storage.list_user_tokens(user_id):
            if not token.is_refreshable(now):
                continue
            seen = latest.get(token.app_id)
            if seen is None or token.created_at > seen.created_at:
                latest[token.app_id] = token

        entries = []
        for app_id, token in latest.items():
            app = self.storage.get_app(app_id)
            if app is None:
                continue
            entries.append({"app": app, "scopes": list(token.scopes), "authorized_at": token.created_at})
        entries.sort(key=lambda e: e["authorized_at"], reverse=True)
        return entries

    def purge_expired(self) -> tuple[int, int]:
        """Drop dead codes and tokens. Returns (codes_removed, tokens_removed)."""
        now = self._clock()
        return self.storage.purge_codes(now), self.storage.purge_tokens(now)
