# Registry of third-party client applications.
# Created: 2026-10-18
#
# Client secrets use the format sqs_<64 hex> and are shown exactly once, at
# creation or rotation. Only their SHA-256 digest is stored.

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from quoteauth.oauth2.errors import OAuthFailure, not_found
from quoteauth.oauth2.models import RegisteredApp, new_record_id
from quoteauth.oauth2.storage import OAuthStorage
from quoteauth.security.audit import get_audit_logger
from quoteauth.security.hashing import generate_secret, hash_secret

logger = logging.getLogger(__name__)

CLIENT_ID_PREFIX = "sq_"
CLIENT_SECRET_PREFIX = "sqs_"


class AppRegistry:
    """Owner-scoped CRUD over registered apps."""

    def __init__(self, storage: OAuthStorage, clock: Callable[[], datetime] | None = None):
        self.storage = storage
        self._clock = clock or (lambda: datetime.now(UTC))

    def create(
        self,
        owner_user_id: str,
        name: str,
        redirect_uri: str,
        description: str | None = None,
    ) -> tuple[RegisteredApp, str]:
        """Register a new app. Returns (app, plaintext_secret).

        The plaintext secret is returned only once and cannot be retrieved later.
        """
        secret = generate_secret(32, CLIENT_SECRET_PREFIX)
        now = self._clock()
        app = RegisteredApp(
            id=new_record_id(),
            owner_user_id=owner_user_id,
            name=name,
            description=description,
            client_id=generate_secret(16, CLIENT_ID_PREFIX),
            client_secret_hash=hash_secret(secret),
            redirect_uri=redirect_uri,
            created_at=now,
            updated_at=now,
        )
        self.storage.add_app(app)
        logger.info("Registered OAuth app %s (%s) for user %s", app.id, app.client_id, owner_user_id)
        get_audit_logger().log_oauth_event(
            action="app_created",
            actor=owner_user_id,
            target=f"app:{app.id}",
            client_id=app.client_id,
        )
        return app, secret

    def list_apps(self, owner_user_id: str) -> list[RegisteredApp]:
        return self.storage.list_apps(owner_user_id)

    def get(self, owner_user_id: str, app_id: str) -> tuple[RegisteredApp | None, OAuthFailure | None]:
        app = self.storage.get_app(app_id)
        # Someone else's app is indistinguishable from a missing one.
        if app is None or app.owner_user_id != owner_user_id:
            return None, not_found()
        return app, None

    def delete(self, owner_user_id: str, app_id: str) -> OAuthFailure | None:
        """Delete an app, revoking its tokens and discarding its codes."""
        app, error = self.get(owner_user_id, app_id)
        if error:
            return error

        revoked = self.storage.revoke_tokens_for(app.id, self._clock())
        discarded = self.storage.delete_codes(app.id)
        self.storage.delete_app(app.id)
        logger.info(
            "Deleted OAuth app %s: revoked %d tokens, discarded %d codes",
            app.id,
            revoked,
            discarded,
        )
        get_audit_logger().log_oauth_event(
            action="app_deleted",
            actor=owner_user_id,
            target=f"app:{app.id}",
            tokens_revoked=revoked,
        )
        return None

    def regenerate_secret(self, owner_user_id: str, app_id: str) -> tuple[str | None, OAuthFailure | None]:
        """Replace the client secret. The old one stops working immediately."""
        app, error = self.get(owner_user_id, app_id)
        if error:
            return None, error

        secret = generate_secret(32, CLIENT_SECRET_PREFIX)
        if not self.storage.update_app_secret(app.id, hash_secret(secret), self._clock()):
            # Deleted between lookup and update.
            return None, not_found()

        get_audit_logger().log_oauth_event(
            action="app_secret_rotated",
            actor=owner_user_id,
            target=f"app:{app.id}",
        )
        return secret, None

    def resolve_client(self, client_id: str) -> RegisteredApp | None:
        """Look up an active app by its public client id."""
        app = self.storage.get_app_by_client_id(client_id)
        if app is None or not app.is_active:
            return None
        return app
