# OAuth2 error taxonomy.
# Created: 2026-10-18
#
# Protocol operations return (value, OAuthFailure | None) instead of raising.
# Only storage faults raise (StorageError).

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    INVALID_CLIENT = "invalid_client"
    INVALID_REQUEST = "invalid_request"
    UNSUPPORTED_RESPONSE_TYPE = "unsupported_response_type"
    UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"
    INVALID_GRANT = "invalid_grant"
    UNAUTHORIZED_CLIENT = "unauthorized_client"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"


_STATUS = {
    ErrorKind.INVALID_CLIENT: 401,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.UNAUTHORIZED_CLIENT: 401,
    ErrorKind.NOT_FOUND: 404,
}


@dataclass(frozen=True)
class OAuthFailure:
    """A typed protocol failure."""

    kind: ErrorKind
    description: str
    status_code: int | None = None

    @property
    def http_status(self) -> int:
        if self.status_code is not None:
            return self.status_code
        return _STATUS.get(self.kind, 400)

    def as_dict(self) -> dict[str, str]:
        return {"error": self.kind.value, "error_description": self.description}


def invalid_client(description: str = "Invalid client credentials") -> OAuthFailure:
    return OAuthFailure(ErrorKind.INVALID_CLIENT, description)


def invalid_request(description: str) -> OAuthFailure:
    return OAuthFailure(ErrorKind.INVALID_REQUEST, description)


def invalid_grant(description: str, status_code: int | None = None) -> OAuthFailure:
    return OAuthFailure(ErrorKind.INVALID_GRANT, description, status_code)


def unauthorized(description: str = "Invalid access token") -> OAuthFailure:
    return OAuthFailure(ErrorKind.UNAUTHORIZED, description)


def not_found(description: str = "OAuth app not found") -> OAuthFailure:
    return OAuthFailure(ErrorKind.NOT_FOUND, description)


class StorageError(Exception):
    """The backing store could not be read or written."""
