"""One-way hashing for client secrets, codes and tokens.

Only SHA-256 hex digests are stored, never the plaintext. This is safe only
because every hashed value is a high-entropy random string minted by this
server; never hash user-chosen secrets (passwords, PINs) with it.
"""

import hashlib
import hmac
import secrets

__all__ = ["hash_secret", "verify_secret", "generate_secret"]


def hash_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode()).hexdigest()


def verify_secret(secret: str, digest: str) -> bool:
    """Check *secret* against a stored *digest* in constant time."""
    return hmac.compare_digest(hash_secret(secret), digest)


def generate_secret(nbytes: int = 32, prefix: str = "") -> str:
    """Return ``prefix`` followed by *nbytes* random bytes as hex."""
    return f"{prefix}{secrets.token_hex(nbytes)}"
