# OAuth2 app, code and token storage.
# Created: 2026-10-18
#
# OAuthStorage is the contract the protocol layer consumes. The two
# concurrency-critical writes (consume_code, revoke_token) are conditional:
# they only succeed if the record is still unused / unrevoked at write time.
#
# MemoryOAuthStorage keeps everything in process memory behind one lock.
# FileOAuthStorage adds JSON persistence so records survive restarts.

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import asdict, fields
from datetime import datetime
from pathlib import Path
from typing import Protocol

from quoteauth.oauth2.errors import StorageError
from quoteauth.oauth2.models import AuthorizationCode, OAuthToken, RegisteredApp

logger = logging.getLogger(__name__)


class OAuthStorage(Protocol):
    # Apps
    def add_app(self, app: RegisteredApp) -> None: ...
    def get_app(self, app_id: str) -> RegisteredApp | None: ...
    def get_app_by_client_id(self, client_id: str) -> RegisteredApp | None: ...
    def list_apps(self, owner_user_id: str) -> list[RegisteredApp]: ...
    def update_app_secret(self, app_id: str, secret_hash: str, now: datetime) -> bool: ...
    def delete_app(self, app_id: str) -> bool: ...

    # Authorization codes
    def add_code(self, code: AuthorizationCode) -> None: ...
    def find_code(self, app_id: str, code_hash: str, now: datetime) -> AuthorizationCode | None: ...
    def consume_code(self, code_id: str, now: datetime) -> bool: ...
    def delete_codes(self, app_id: str, user_id: str | None = None) -> int: ...
    def purge_codes(self, now: datetime) -> int: ...

    # Tokens
    def add_token(self, token: OAuthToken) -> None: ...
    def find_refreshable_token(
        self, app_id: str, refresh_hash: str, now: datetime
    ) -> OAuthToken | None: ...
    def find_active_token(self, access_hash: str, now: datetime) -> OAuthToken | None: ...
    def revoke_token(self, token_id: str, now: datetime) -> bool: ...
    def revoke_by_access_hash(self, access_hash: str, now: datetime) -> int: ...
    def revoke_by_refresh_hash(self, refresh_hash: str, now: datetime) -> int: ...
    def revoke_tokens_for(self, app_id: str, now: datetime, user_id: str | None = None) -> int: ...
    def list_user_tokens(self, user_id: str) -> list[OAuthToken]: ...
    def purge_tokens(self, now: datetime) -> int: ...


class MemoryOAuthStorage:
    """In-process storage. Every operation runs under a single lock."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._apps: dict[str, RegisteredApp] = {}
        self._client_index: dict[str, str] = {}  # client_id → app id
        self._codes: dict[str, AuthorizationCode] = {}
        self._code_index: dict[str, str] = {}  # code_hash → code id
        self._tokens: dict[str, OAuthToken] = {}
        self._access_index: dict[str, str] = {}  # access_token_hash → token id
        self._refresh_index: dict[str, str] = {}  # refresh_token_hash → token id

    # Persistence hook: called after every successful mutation.
    def _changed(self) -> None:
        pass

    # --- apps -------------------------------------------------------------

    def add_app(self, app: RegisteredApp) -> None:
        with self._lock:
            if app.client_id in self._client_index:
                raise ValueError(f"Duplicate client_id: {app.client_id}")
            self._apps[app.id] = app
            self._client_index[app.client_id] = app.id
            self._changed()

    def get_app(self, app_id: str) -> RegisteredApp | None:
        with self._lock:
            return self._apps.get(app_id)

    def get_app_by_client_id(self, client_id: str) -> RegisteredApp | None:
        with self._lock:
            app_id = self._client_index.get(client_id)
            return self._apps.get(app_id) if app_id else None

    def list_apps(self, owner_user_id: str) -> list[RegisteredApp]:
        with self._lock:
            apps = [a for a in self._apps.values() if a.owner_user_id == owner_user_id]
        return sorted(apps, key=lambda a: a.created_at, reverse=True)

    def update_app_secret(self, app_id: str, secret_hash: str, now: datetime) -> bool:
        with self._lock:
            app = self._apps.get(app_id)
            if app is None:
                return False
            app.client_secret_hash = secret_hash
            app.updated_at = now
            self._changed()
            return True

    def delete_app(self, app_id: str) -> bool:
        with self._lock:
            app = self._apps.pop(app_id, None)
            if app is None:
                return False
            self._client_index.pop(app.client_id, None)
            self._changed()
            return True

    # --- authorization codes ------------------------------------------------

    def add_code(self, code: AuthorizationCode) -> None:
        with self._lock:
            self._codes[code.id] = code
            self._code_index[code.code_hash] = code.id
            self._changed()

    def find_code(self, app_id: str, code_hash: str, now: datetime) -> AuthorizationCode | None:
        with self._lock:
            code_id = self._code_index.get(code_hash)
            code = self._codes.get(code_id) if code_id else None
            if code is None or code.app_id != app_id:
                return None
            if code.used_at is not None or code.expires_at <= now:
                return None
            return code

    def consume_code(self, code_id: str, now: datetime) -> bool:
        with self._lock:
            code = self._codes.get(code_id)
            if code is None or code.used_at is not None:
                return False
            code.used_at = now
            self._changed()
            return True

    def delete_codes(self, app_id: str, user_id: str | None = None) -> int:
        with self._lock:
            doomed = [
                c
                for c in self._codes.values()
                if c.app_id == app_id and (user_id is None or c.user_id == user_id)
            ]
            self._drop_codes(doomed)
            return len(doomed)

    def purge_codes(self, now: datetime) -> int:
        with self._lock:
            doomed = [c for c in self._codes.values() if c.used_at or c.expires_at <= now]
            self._drop_codes(doomed)
            return len(doomed)

    def _drop_codes(self, codes: list[AuthorizationCode]) -> None:
        for code in codes:
            self._codes.pop(code.id, None)
            self._code_index.pop(code.code_hash, None)
        if codes:
            self._changed()

    # --- tokens -------------------------------------------------------------

    def add_token(self, token: OAuthToken) -> None:
        with self._lock:
            self._tokens[token.id] = token
            self._access_index[token.access_token_hash] = token.id
            self._refresh_index[token.refresh_token_hash] = token.id
            self._changed()

    def find_refreshable_token(
        self, app_id: str, refresh_hash: str, now: datetime
    ) -> OAuthToken | None:
        with self._lock:
            token = self._lookup(self._refresh_index, refresh_hash)
            if token is None or token.app_id != app_id or not token.is_refreshable(now):
                return None
            return token

    def find_active_token(self, access_hash: str, now: datetime) -> OAuthToken | None:
        with self._lock:
            token = self._lookup(self._access_index, access_hash)
            if token is None or not token.is_active(now):
                return None
            return token

    def revoke_token(self, token_id: str, now: datetime) -> bool:
        with self._lock:
            token = self._tokens.get(token_id)
            if token is None or token.revoked_at is not None:
                return False
            token.revoked_at = now
            self._changed()
            return True

    def revoke_by_access_hash(self, access_hash: str, now: datetime) -> int:
        with self._lock:
            return self._revoke(self._lookup(self._access_index, access_hash), now)

    def revoke_by_refresh_hash(self, refresh_hash: str, now: datetime) -> int:
        with self._lock:
            return self._revoke(self._lookup(self._refresh_index, refresh_hash), now)

    def revoke_tokens_for(self, app_id: str, now: datetime, user_id: str | None = None) -> int:
        with self._lock:
            count = 0
            for token in self._tokens.values():
                if token.app_id != app_id or token.revoked_at is not None:
                    continue
                if user_id is not None and token.user_id != user_id:
                    continue
                token.revoked_at = now
                count += 1
            if count:
                self._changed()
            return count

    def list_user_tokens(self, user_id: str) -> list[OAuthToken]:
        with self._lock:
            return [t for t in self._tokens.values() if t.user_id == user_id]

    def purge_tokens(self, now: datetime) -> int:
        with self._lock:
            doomed = [t for t in self._tokens.values() if t.refresh_expires_at <= now]
            for token in doomed:
                self._tokens.pop(token.id, None)
                self._access_index.pop(token.access_token_hash, None)
                self._refresh_index.pop(token.refresh_token_hash, None)
            if doomed:
                self._changed()
            return len(doomed)

    def _lookup(self, index: dict[str, str], digest: str) -> OAuthToken | None:
        token_id = index.get(digest)
        return self._tokens.get(token_id) if token_id else None

    def _revoke(self, token: OAuthToken | None, now: datetime) -> int:
        if token is None or token.revoked_at is not None:
            return 0
        token.revoked_at = now
        self._changed()
        return 1


# ---------------------------------------------------------------------------
# JSON file persistence
# ---------------------------------------------------------------------------


def _encode(record) -> dict:
    data = asdict(record)
    for key, value in data.items():
        if isinstance(value, datetime):
            data[key] = value.isoformat()
    return data


def _decode(cls, entry: dict):
    kwargs = {}
    for f in fields(cls):
        if f.name not in entry:
            continue
        value = entry[f.name]
        if isinstance(value, str) and f.name.endswith("_at"):
            value = datetime.fromisoformat(value)
        kwargs[f.name] = value
    return cls(**kwargs)


class FileOAuthStorage(MemoryOAuthStorage):
    """MemoryOAuthStorage that rewrites a JSON snapshot after every mutation.

    The snapshot is written to a temp file and renamed into place, so a crash
    mid-write leaves the previous snapshot intact. If the write fails, memory
    is rebuilt from the last snapshot that did reach disk and the mutation
    raises StorageError.
    """

    def __init__(self, path: Path):
        super().__init__()
        self._path = path
        self._persisted: dict = {"apps": [], "codes": [], "tokens": []}
        self._load()

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text())
            self._apply(data)
        except (json.JSONDecodeError, OSError, KeyError, TypeError, ValueError) as exc:
            logger.error("Failed to load OAuth storage from %s: %s", self._path, exc)
            raise StorageError(f"Cannot load OAuth storage from {self._path}") from exc
        self._persisted = data
        logger.debug(
            "Loaded %d apps, %d codes, %d tokens from %s",
            len(self._apps),
            len(self._codes),
            len(self._tokens),
            self._path,
        )

    def _apply(self, data: dict) -> None:
        """Replace all in-memory records with those in *data*."""
        for table in (
            self._apps,
            self._client_index,
            self._codes,
            self._code_index,
            self._tokens,
            self._access_index,
            self._refresh_index,
        ):
            table.clear()
        for entry in data.get("apps", []):
            app = _decode(RegisteredApp, entry)
            self._apps[app.id] = app
            self._client_index[app.client_id] = app.id
        for entry in data.get("codes", []):
            code = _decode(AuthorizationCode, entry)
            self._codes[code.id] = code
            self._code_index[code.code_hash] = code.id
        for entry in data.get("tokens", []):
            token = _decode(OAuthToken, entry)
            self._tokens[token.id] = token
            self._access_index[token.access_token_hash] = token.id
            self._refresh_index[token.refresh_token_hash] = token.id

    def _changed(self) -> None:
        data = {
            "apps": [_encode(a) for a in self._apps.values()],
            "codes": [_encode(c) for c in self._codes.values()],
            "tokens": [_encode(t) for t in self._tokens.values()],
        }
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(data, indent=2))
            try:
                tmp.chmod(0o600)
            except OSError:
                pass
            os.replace(tmp, self._path)
        except OSError as exc:
            logger.error("Failed to persist OAuth storage to %s: %s", self._path, exc)
            self._apply(self._persisted)
            raise StorageError(f"Cannot write OAuth storage to {self._path}") from exc
        self._persisted = data
