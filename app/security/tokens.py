"""
One-time verification tokens for emailed links.

The raw token (256 bits from ``secrets``, hex encoded) is shown to the user
exactly once, inside the link. Only its SHA-256 digest is persisted, so a
database leak cannot be replayed as a confirmation link.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass

TOKEN_BYTES = 32

__all__ = [
    "IssuedToken",
    "hash_token",
    "issue_token",
    "verify_token",
]


@dataclass(frozen=True, slots=True)
class IssuedToken:
    raw_token: str
    token_hash: str

    def __repr__(self) -> str:
        return f"IssuedToken(token_hash={self.token_hash[:8]}...)"


def hash_token(raw_token: str) -> str:
    """Hex SHA-256 digest of a raw token."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def issue_token() -> IssuedToken:
    """Generate a fresh raw token and the digest to store alongside it."""
    raw_token = secrets.token_hex(TOKEN_BYTES)
    return IssuedToken(raw_token=raw_token, token_hash=hash_token(raw_token))


def verify_token(raw_token: str | None, stored_hash: str | None) -> bool:
    """
    Check a presented raw token against a stored digest.

    Comparison is constant time.
    """
    if not raw_token or not stored_hash:
        return False
    return hmac.compare_digest(hash_token(raw_token).encode("ascii"), stored_hash.encode("utf-8"))
