"""
Persistence for the per-user checkins row.

Sweep transitions are written with a compare-and-set on the state the
sweep read, so two overlapping runs cannot both count the same missed
check-in. Confirmations are unconditional: the owner proving liveness
always wins.
"""

from datetime import datetime

from app.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one, with_db_retry
from app.features.checkin.domain import Checkin, CheckinState, CheckinStatus
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class CheckinRepositoryError(DatabaseError):
    pass


class CheckinRepository:
    SELECT_COLUMNS = """
        id, user_id, status, attempts, last_confirmed_at, next_due_at, updated_at,
        contacts_notified_at, contact_alert_attempts
    """

    @staticmethod
    def _row_to_checkin(row: dict) -> Checkin:
        return Checkin(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            state=CheckinState(
                status=CheckinStatus(row["status"]),
                attempts=row.get("attempts") or 0,
                last_confirmed_at=row.get("last_confirmed_at"),
                next_due_at=row.get("next_due_at"),
            ),
            updated_at=row.get("updated_at"),
            contacts_notified_at=row.get("contacts_notified_at"),
            contact_alert_attempts=row.get("contact_alert_attempts") or 0,
        )

    @classmethod
    async def get(cls, user_id: str) -> Checkin | None:
        row = await fetch_one(
            f"SELECT {cls.SELECT_COLUMNS} FROM checkins WHERE user_id = %s",
            (user_id,),
        )
        return cls._row_to_checkin(row) if row else None

    @classmethod
    async def create_if_missing(cls, user_id: str, state: CheckinState) -> Checkin:
        """Insert the user's first checkins row, or return the existing one."""
        row = await fetch_one(
            f"""
            INSERT INTO checkins (user_id, status, attempts, last_confirmed_at, next_due_at)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (user_id) DO NOTHING
            RETURNING {cls.SELECT_COLUMNS}
            """,
            (
                user_id,
                state.status.value,
                state.attempts,
                state.last_confirmed_at,
                state.next_due_at,
            ),
        )
        if row:
            logger.info("Check-in initialized", user_id=user_id, next_due_at=str(state.next_due_at))
            return cls._row_to_checkin(row)

        existing = await cls.get(user_id)
        if existing is None:
            raise CheckinRepositoryError("Check-in row vanished during initialization", operation="create")
        return existing

    @classmethod
    async def save(cls, user_id: str, state: CheckinState) -> Checkin:
        """
        Unconditional upsert, used by confirmations and admin resets.

        Starts a new cycle, so the trusted-contact alert marker is cleared.
        """
        row = await fetch_one(
            f"""
            INSERT INTO checkins (user_id, status, attempts, last_confirmed_at, next_due_at)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (user_id) DO UPDATE SET
                status = EXCLUDED.status,
                attempts = EXCLUDED.attempts,
                last_confirmed_at = EXCLUDED.last_confirmed_at,
                next_due_at = EXCLUDED.next_due_at,
                contacts_notified_at = NULL,
                contact_alert_attempts = 0,
                updated_at = NOW()
            RETURNING {cls.SELECT_COLUMNS}
            """,
            (
                user_id,
                state.status.value,
                state.attempts,
                state.last_confirmed_at,
                state.next_due_at,
            ),
        )
        if not row:
            raise CheckinRepositoryError("Failed to save check-in", operation="save")
        return cls._row_to_checkin(row)

    @classmethod
    async def compare_and_set(cls, user_id: str, expected: CheckinState, new: CheckinState) -> bool:
        """
        Write ``new`` only if the row still holds ``expected``.

        Returns False when another writer got there first.
        """
        affected = await execute_query(
            """
            UPDATE checkins
            SET status = %s,
                attempts = %s,
                last_confirmed_at = %s,
                next_due_at = %s,
                updated_at = NOW()
            WHERE user_id = %s
              AND status = %s
              AND attempts = %s
              AND next_due_at IS NOT DISTINCT FROM %s
            """,
            (
                new.status.value,
                new.attempts,
                new.last_confirmed_at,
                new.next_due_at,
                user_id,
                expected.status.value,
                expected.attempts,
                expected.next_due_at,
            ),
        )
        return affected > 0

    @classmethod
    @with_db_retry()
    async def list_due(cls, now: datetime, limit: int = 500) -> list[Checkin]:
        """
        Due check-ins of owners that still have a scheduled check-in message.

        Rows without such a message never transition, so they are left out
        of the batch instead of occupying it on every run.
        """
        rows = await fetch_all(
            f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM checkins c
            WHERE c.next_due_at <= %s
              AND c.status <> 'confirmed_absent'
              AND EXISTS (
                  SELECT 1
                  FROM messages m
                  JOIN delivery_rules r ON r.message_id = m.id
                  WHERE m.owner_id = c.user_id
                    AND m.status = 'scheduled'
                    AND r.mode = 'checkin'
              )
            ORDER BY c.next_due_at
            LIMIT %s
            """,
            (now, limit),
        )
        return [cls._row_to_checkin(row) for row in rows]

    @classmethod
    async def mark_contacts_notified(cls, user_id: str, now: datetime) -> bool:
        """Record that the current absence was announced. False if already recorded."""
        affected = await execute_query(
            """
            UPDATE checkins
            SET contacts_notified_at = %s, updated_at = NOW()
            WHERE user_id = %s
              AND status = 'confirmed_absent'
              AND contacts_notified_at IS NULL
            """,
            (now, user_id),
        )
        return affected > 0

    @classmethod
    async def record_contact_alert_failure(cls, user_id: str) -> int:
        """Count a run in which at least one trusted-contact alert failed."""
        row = await fetch_one(
            """
            UPDATE checkins
            SET contact_alert_attempts = contact_alert_attempts + 1, updated_at = NOW()
            WHERE user_id = %s
            RETURNING contact_alert_attempts
            """,
            (user_id,),
        )
        return row["contact_alert_attempts"] if row else 0
