"""Token hashing and generation helpers.

Bearer tokens are only ever persisted or compared as SHA-256 hex digests.
The digest is not salted: it matches a value the server already holds, it
does not protect low-entropy secrets.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

SESSION_TOKEN_BYTES = 32  # 256 bits of entropy
LOG_HASH_LENGTH = 8


def hash_token(token: str) -> str:
    """Hash a bearer token for storage.

    Args:
        token: The raw token.

    Returns:
        Hex-encoded SHA-256 digest (64 characters).
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_session_token() -> str:
    """Generate an opaque, URL-safe session token."""
    return secrets.token_urlsafe(SESSION_TOKEN_BYTES)


def tokens_match(token_a: str, token_b: str) -> bool:
    """Compare two token strings in constant time."""
    return hmac.compare_digest(token_a.encode("utf-8"), token_b.encode("utf-8"))


def hash_for_log(value: str | None) -> str:
    """Short, non-reversible fingerprint of a sensitive value for log lines."""
    if not value:
        return "-"
    return hash_token(value)[:LOG_HASH_LENGTH]
