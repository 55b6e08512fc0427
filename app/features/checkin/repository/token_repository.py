"""
Single-use verification tokens (check-in confirmation links).

Only the SHA-256 hash of a token is stored. Claiming is an atomic
``UPDATE ... WHERE used_at IS NULL`` so a link can be redeemed once.
"""

from datetime import datetime

from app.db.helpers import execute_query, fetch_one
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

CHECKIN_CONFIRM_ACTION = "checkin_confirm"


class VerificationTokenRepository:
    @classmethod
    async def create(cls, user_id: str, token_hash: str, expires_at: datetime, action: str = CHECKIN_CONFIRM_ACTION) -> str:
        row = await fetch_one(
            """
            INSERT INTO verification_tokens (user_id, token_hash, action, expires_at)
            VALUES (%s, %s, %s, %s)
            RETURNING id
            """,
            (user_id, token_hash, action, expires_at),
        )
        return str(row["id"])

    @classmethod
    async def claim(cls, token_hash: str, now: datetime, action: str = CHECKIN_CONFIRM_ACTION) -> str | None:
        """
        Mark an unused, unexpired token as used.

        Returns:
            The owning user id, or None if the token is unknown, expired or spent
        """
        row = await fetch_one(
            """
            UPDATE verification_tokens
            SET used_at = %s, used_reason = 'confirmed'
            WHERE token_hash = %s
              AND action = %s
              AND used_at IS NULL
              AND expires_at > %s
            RETURNING user_id
            """,
            (now, token_hash, action, now),
        )
        return str(row["user_id"]) if row else None

    @classmethod
    async def expire_stale(cls, now: datetime) -> int:
        """Retire unused tokens past their expiry. Returns the number retired."""
        affected = await execute_query(
            """
            UPDATE verification_tokens
            SET used_at = %s, used_reason = 'expired'
            WHERE used_at IS NULL AND expires_at <= %s
            """,
            (now, now),
        )
        if affected:
            logger.info("Expired verification tokens", count=affected)
        return affected
