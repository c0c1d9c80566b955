# Authorization code issuance and single-use redemption.
# Created: 2026-10-18
#
# Codes are 64 hex chars, live for 10 minutes and are stored only as hashes.
# PKCE (RFC 7636) is optional per request; S256 and plain are accepted.

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from quoteauth.oauth2.apps import AppRegistry
from quoteauth.oauth2.errors import (
    ErrorKind,
    OAuthFailure,
    invalid_client,
    invalid_grant,
    invalid_request,
)
from quoteauth.oauth2.models import AuthorizationCode, RegisteredApp, new_record_id
from quoteauth.security.audit import get_audit_logger
from quoteauth.security.hashing import generate_secret, hash_secret

logger = logging.getLogger(__name__)

CODE_TTL = timedelta(minutes=10)
PKCE_METHODS = ("S256", "plain")

_INVALID_CODE = "Invalid or expired authorization code"


def s256_challenge(verifier: str) -> str:
    """BASE64URL(SHA256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode()).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode()


def verify_pkce(code: AuthorizationCode, code_verifier: str | None) -> bool:
    if not code.code_challenge:
        return True
    if not code_verifier:
        return False
    if code.code_challenge_method == "S256":
        candidate = s256_challenge(code_verifier)
    else:
        candidate = code_verifier
    return hmac.compare_digest(candidate.encode(), code.code_challenge.encode())


def parse_scopes(scope: str | None) -> list[str]:
    """Split a space-delimited scope string, dropping blanks and duplicates."""
    if not scope:
        return []
    return list(dict.fromkeys(s for s in scope.split(" ") if s))


def build_redirect_url(redirect_uri: str, params: dict[str, str]) -> str:
    """Set *params* on the query string of *redirect_uri*, keeping other params."""
    parts = urlsplit(redirect_uri)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in params]
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


class AuthorizationCodeIssuer:
    """Creates codes for an authenticated resource owner and redeems them once."""

    def __init__(self, apps: AppRegistry, clock: Callable[[], datetime] | None = None):
        self.apps = apps
        self.storage = apps.storage
        self._clock = clock or (lambda: datetime.now(UTC))

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
        """Issue a code and return the client redirect URL carrying it.

        Returns (redirect_url, error). If error is not None, redirect_url is None.
        """
        app = self.apps.resolve_client(client_id)
        if app is None:
            return None, invalid_client("Invalid client_id")

        # Exact match only: no prefix, case or trailing-slash leniency.
        if redirect_uri != app.redirect_uri:
            return None, invalid_request("Invalid redirect_uri")

        if response_type != "code":
            return None, OAuthFailure(
                ErrorKind.UNSUPPORTED_RESPONSE_TYPE,
                "Only the authorization_code flow is supported",
            )

        if code_challenge:
            code_challenge_method = code_challenge_method or "plain"
            if code_challenge_method not in PKCE_METHODS:
                return None, invalid_request("Unsupported code_challenge_method")
        else:
            code_challenge = None
            code_challenge_method = None

        # Requested scopes are granted as-is; see DESIGN.md.
        scopes = parse_scopes(scope)

        code = generate_secret(32)
        now = self._clock()
        record = AuthorizationCode(
            id=new_record_id(),
            app_id=app.id,
            user_id=user_id,
            code_hash=hash_secret(code),
            redirect_uri=redirect_uri,
            scopes=scopes,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            expires_at=now + CODE_TTL,
            created_at=now,
        )
        self.storage.add_code(record)
        logger.debug("Issued authorization code %s for app %s, user %s", record.id, app.id, user_id)
        get_audit_logger().log_oauth_event(
            action="code_issued",
            actor=user_id,
            target=f"app:{app.id}",
            scopes=scopes,
            pkce=code_challenge_method,
        )

        params = {"code": code}
        if state:
            params["state"] = state
        return build_redirect_url(redirect_uri, params), None

    def redeem(
        self,
        app: RegisteredApp,
        code: str | None,
        redirect_uri: str | None = None,
        code_verifier: str | None = None,
    ) -> tuple[AuthorizationCode | None, OAuthFailure | None]:
        """Validate and consume a code presented by an authenticated client.

        Unknown, foreign, used and expired codes all fail the same way.
        """
        if not code:
            return None, invalid_request("Missing authorization code")

        now = self._clock()
        record = self.storage.find_code(app.id, hash_secret(code), now)
        if record is None:
            return None, invalid_grant(_INVALID_CODE)

        if redirect_uri and redirect_uri != record.redirect_uri:
            logger.debug("Code %s presented with a different redirect_uri", record.id)
            return None, invalid_grant(_INVALID_CODE)

        if not verify_pkce(record, code_verifier):
            logger.debug("Code %s failed PKCE verification", record.id)
            return None, invalid_grant(_INVALID_CODE)

        # Conditional write: of two racing exchanges only one gets here with True.
        if not self.storage.consume_code(record.id, now):
            logger.info("Authorization code %s already consumed (concurrent exchange)", record.id)
            return None, invalid_grant(_INVALID_CODE)

        return record, None
