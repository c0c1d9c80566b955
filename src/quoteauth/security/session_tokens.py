"""HMAC-signed end-user session tokens with TTL.

Token format: ``{user_id}:{expires_unix}:{hex_hmac}``

These stand in for the workspace login layer: the dashboard mints one when a
user signs in, and the app-management and authorize endpoints accept it as
proof of the resource owner's identity.
"""

import hashlib
import hmac
import time

__all__ = ["create_session_token", "verify_session_token"]


def create_session_token(user_id: str, secret: str, ttl_hours: int = 24) -> str:
    """Issue a session token for *user_id* that expires after *ttl_hours*."""
    if ":" in user_id:
        raise ValueError("user_id must not contain ':'")
    expires = int(time.time()) + ttl_hours * 3600
    sig = _sign(secret, f"{user_id}:{expires}")
    return f"{user_id}:{expires}:{sig}"


def verify_session_token(token: str, secret: str) -> str | None:
    """Verify a session token. Returns the user id if valid and not expired."""
    parts = token.split(":")
    if len(parts) != 3:
        return None

    user_id, expires_str, sig = parts
    if not user_id:
        return None
    try:
        expires = int(expires_str)
    except ValueError:
        return None

    if time.time() > expires:
        return None

    expected = _sign(secret, f"{user_id}:{expires_str}")
    if not hmac.compare_digest(sig, expected):
        return None
    return user_id


def _sign(key: str, message: str) -> str:
    return hmac.new(key.encode(), message.encode(), hashlib.sha256).hexdigest()
