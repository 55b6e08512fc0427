"""
Persistence for trusted contacts (one user, many contacts).
"""

import psycopg

from app.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one, fetch_val
from app.features.delivery.domain import TrustedContact
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DuplicateTrustedContactError(DatabaseError):
    """The user already has a trusted contact with this email."""


class TrustedContactRepository:
    SELECT_COLUMNS = "id, user_id, name, email, created_at"

    @staticmethod
    def _row_to_contact(row: dict) -> TrustedContact:
        return TrustedContact(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            name=row.get("name") or "",
            email=row["email"],
            created_at=row.get("created_at"),
        )

    @classmethod
    async def list_for_user(cls, user_id: str) -> list[TrustedContact]:
        rows = await fetch_all(
            f"SELECT {cls.SELECT_COLUMNS} FROM trusted_contacts WHERE user_id = %s ORDER BY created_at",
            (user_id,),
        )
        return [cls._row_to_contact(row) for row in rows]

    @classmethod
    async def count_for_user(cls, user_id: str) -> int:
        count = await fetch_val("SELECT COUNT(*) FROM trusted_contacts WHERE user_id = %s", (user_id,))
        return int(count or 0)

    @classmethod
    async def create(cls, user_id: str, name: str, email: str) -> TrustedContact:
        try:
            row = await fetch_one(
                f"""
                INSERT INTO trusted_contacts (user_id, name, email)
                VALUES (%s, %s, %s)
                RETURNING {cls.SELECT_COLUMNS}
                """,
                (user_id, name, email.strip().lower()),
            )
        except DatabaseError as e:
            if isinstance(e.__cause__, psycopg.errors.UniqueViolation):
                raise DuplicateTrustedContactError(
                    "This contact is already in your list.", operation="create", recoverable=False
                ) from e
            raise

        logger.info("Trusted contact added", user_id=user_id, contact_id=str(row["id"]))
        return cls._row_to_contact(row)

    @classmethod
    async def delete(cls, contact_id: str, user_id: str) -> bool:
        affected = await execute_query(
            "DELETE FROM trusted_contacts WHERE id = %s AND user_id = %s",
            (contact_id, user_id),
        )
        if affected:
            logger.info("Trusted contact removed", user_id=user_id, contact_id=contact_id)
        return affected > 0
