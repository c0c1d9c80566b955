# Signed-claims access tokens.
# Created: 2026-10-18
#
# HS256 JWTs carrying {sub, client_id, scopes, type} plus iat/exp/jti.
# The "type" claim keeps tokens minted for other purposes (password reset,
# email verification) from being accepted as OAuth access tokens.

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import jwt

logger = logging.getLogger(__name__)

OAUTH_ACCESS_TYPE = "oauth_access"

# Reasons reported by ClaimsTokenSigner.verify()
MALFORMED = "malformed"
BAD_SIGNATURE = "bad_signature"
EXPIRED = "expired"
WRONG_TYPE = "wrong_type"


@dataclass(frozen=True)
class AccessClaims:
    """Claims embedded in an OAuth access token."""

    subject: str
    client_id: str
    scopes: tuple[str, ...]
    type: str = OAUTH_ACCESS_TYPE


class ClaimsTokenSigner:
    """Issues and verifies signed, expiring claims tokens."""

    def __init__(
        self,
        key: str | None = None,
        algorithm: str | None = None,
        expected_type: str = OAUTH_ACCESS_TYPE,
    ):
        if key is None or algorithm is None:
            from quoteauth.config import get_settings

            settings = get_settings()
            key = key or settings.signing_key()
            algorithm = algorithm or settings.jwt_algorithm
        self._key = key
        self._algorithm = algorithm
        self._expected_type = expected_type

    def issue(self, claims: AccessClaims, ttl: timedelta) -> str:
        now = datetime.now(UTC)
        payload = {
            "sub": claims.subject,
            "client_id": claims.client_id,
            "scopes": list(claims.scopes),
            "type": claims.type,
            "iat": now,
            "exp": now + ttl,
            # Two tokens minted in the same second must still differ.
            "jti": secrets.token_hex(8),
        }
        return jwt.encode(payload, self._key, algorithm=self._algorithm)

    def verify(self, token: str) -> tuple[AccessClaims | None, str | None]:
        """Verify a token.

        Returns (claims, reason). If reason is not None, claims is None.
        """
        try:
            payload = jwt.decode(
                token,
                self._key,
                algorithms=[self._algorithm],
                options={"require": ["exp", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            return None, EXPIRED
        except jwt.InvalidSignatureError:
            return None, BAD_SIGNATURE
        except jwt.InvalidTokenError as exc:
            logger.debug("Rejected malformed claims token: %s", exc)
            return None, MALFORMED

        if payload.get("type") != self._expected_type:
            return None, WRONG_TYPE

        scopes = payload.get("scopes") or []
        client_id = payload.get("client_id")
        if not isinstance(scopes, list) or not isinstance(client_id, str):
            return None, MALFORMED

        return (
            AccessClaims(
                subject=str(payload["sub"]),
                client_id=client_id,
                scopes=tuple(str(s) for s in scopes),
                type=payload["type"],
            ),
            None,
        )
