"""
Persistence for messages, their delivery rules and recipients.

Status changes only go through conditional updates so that overlapping
cron invocations can never move a message twice.
"""

from datetime import datetime
from typing import Iterable

from app.db.helpers import (
    DatabaseError,
    execute_query,
    fetch_all,
    fetch_one,
    fetch_val,
    with_db_retry,
)
from app.db.pool import db_pool
from app.features.delivery.domain import (
    DeliveryRule,
    DeliveryRuleValidationError,
    Message,
    MessageStatus,
    MessageType,
    Recipient,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class MessageRepositoryError(DatabaseError):
    """More specific exception for message persistence failures."""


class MessageRepository:
    """Persistence helpers backing message composition and delivery."""

    SELECT_COLUMNS = """
        m.id, m.owner_id, m.type, m.status, m.text_content, m.media_path, m.created_at,
        r.id AS rule_id, r.mode, r.deliver_at, r.checkin_interval_days, r.attempts_limit
    """

    @staticmethod
    def _row_to_rule(row: dict) -> DeliveryRule | None:
        if not row.get("mode"):
            return None
        try:
            return DeliveryRule(
                id=str(row["rule_id"]),
                message_id=str(row["id"]),
                mode=row["mode"],
                deliver_at=row.get("deliver_at"),
                checkin_interval_days=row.get("checkin_interval_days"),
                attempts_limit=row.get("attempts_limit") or 1,
            )
        except DeliveryRuleValidationError as e:
            logger.error("Stored delivery rule is invalid", message_id=str(row["id"]), reason=e.reason)
            return None

    @classmethod
    def _row_to_message(cls, row: dict, recipients: list[Recipient] | None = None) -> Message:
        return Message(
            id=str(row["id"]),
            owner_id=str(row["owner_id"]),
            type=MessageType(row["type"]),
            status=MessageStatus(row["status"]),
            text_content=row.get("text_content"),
            media_path=row.get("media_path"),
            created_at=row.get("created_at"),
            rule=cls._row_to_rule(row),
            recipients=recipients or [],
        )

    @classmethod
    async def _hydrate(cls, rows: list[dict]) -> list[Message]:
        """Attach recipients to message rows with a single extra query."""
        if not rows:
            return []

        message_ids = [str(row["id"]) for row in rows]
        recipient_rows = await fetch_all(
            """
            SELECT id, message_id, name, email, delivered_at, send_attempts
            FROM recipients
            WHERE message_id = ANY(%s::uuid[])
            ORDER BY message_id, id
            """,
            (message_ids,),
        )

        by_message: dict[str, list[Recipient]] = {}
        for r in recipient_rows:
            by_message.setdefault(str(r["message_id"]), []).append(
                Recipient(
                    id=str(r["id"]),
                    message_id=str(r["message_id"]),
                    name=r["name"] or "",
                    email=r["email"],
                    delivered_at=r.get("delivered_at"),
                    send_attempts=r.get("send_attempts") or 0,
                )
            )

        return [cls._row_to_message(row, by_message.get(str(row["id"]))) for row in rows]

    @staticmethod
    async def _insert_recipients(conn, message_id: str, recipients: list[Recipient]) -> None:
        for recipient in recipients:
            row = await fetch_one(
                """
                INSERT INTO recipients (message_id, name, email)
                VALUES (%s, %s, %s)
                RETURNING id
                """,
                (message_id, recipient.name, recipient.email),
                connection=conn,
            )
            recipient.id = str(row["id"])
            recipient.message_id = message_id

    @classmethod
    async def create_message(
        cls,
        owner_id: str,
        message_type: MessageType,
        status: MessageStatus,
        rule: DeliveryRule,
        recipients: Iterable[Recipient],
        text_content: str | None = None,
        media_path: str | None = None,
    ) -> Message:
        """
        Insert a message with its delivery rule and recipients in one transaction.
        """
        recipients = list(recipients)

        async with db_pool.transaction() as conn:
            message_row = await fetch_one(
                """
                INSERT INTO messages (owner_id, type, status, text_content, media_path)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING id, created_at
                """,
                (owner_id, message_type.value, status.value, text_content, media_path),
                connection=conn,
            )
            if not message_row:
                raise MessageRepositoryError("Failed to create message", operation="create_message")

            message_id = str(message_row["id"])

            rule_row = await fetch_one(
                """
                INSERT INTO delivery_rules (
                    message_id, mode, deliver_at, checkin_interval_days, attempts_limit
                )
                VALUES (%s, %s, %s, %s, %s)
                RETURNING id
                """,
                (
                    message_id,
                    rule.mode.value,
                    rule.deliver_at,
                    rule.checkin_interval_days,
                    rule.attempts_limit,
                ),
                connection=conn,
            )

            await cls._insert_recipients(conn, message_id, recipients)

        rule.id = str(rule_row["id"])
        rule.message_id = message_id

        logger.info(
            "Message created",
            message_id=message_id,
            owner_id=owner_id,
            type=message_type.value,
            status=status.value,
            mode=rule.mode.value,
            recipient_count=len(recipients),
        )

        return Message(
            id=message_id,
            owner_id=owner_id,
            type=message_type,
            status=status,
            text_content=text_content,
            media_path=media_path,
            created_at=message_row["created_at"],
            rule=rule,
            recipients=recipients,
        )

    @classmethod
    async def list_for_owner(cls, owner_id: str) -> list[Message]:
        rows = await fetch_all(
            f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM messages m
            LEFT JOIN delivery_rules r ON r.message_id = m.id
            WHERE m.owner_id = %s
            ORDER BY m.created_at DESC
            """,
            (owner_id,),
        )
        return await cls._hydrate(rows)

    @classmethod
    async def get_for_owner(cls, message_id: str, owner_id: str) -> Message | None:
        rows = await fetch_all(
            f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM messages m
            LEFT JOIN delivery_rules r ON r.message_id = m.id
            WHERE m.id = %s AND m.owner_id = %s
            """,
            (message_id, owner_id),
        )
        messages = await cls._hydrate(rows)
        return messages[0] if messages else None

    @classmethod
    async def count_active(cls, owner_id: str) -> int:
        """Messages that still count against the plan (not yet delivered)."""
        count = await fetch_val(
            "SELECT COUNT(*) FROM messages WHERE owner_id = %s AND status <> 'delivered'",
            (owner_id,),
        )
        return int(count or 0)

    @classmethod
    async def mark_scheduled(cls, message_id: str, owner_id: str) -> bool:
        """draft -> scheduled. Returns False if the message was not a draft."""
        affected = await execute_query(
            """
            UPDATE messages
            SET status = 'scheduled'
            WHERE id = %s AND owner_id = %s AND status = 'draft'
            """,
            (message_id, owner_id),
        )
        return affected > 0

    @classmethod
    async def mark_delivered(cls, message_id: str) -> bool:
        """
        scheduled -> delivered, compare-and-swap on status.

        Returns True only for the caller that performed the transition.
        """
        affected = await execute_query(
            """
            UPDATE messages
            SET status = 'delivered', delivered_at = NOW()
            WHERE id = %s AND status = 'scheduled'
            """,
            (message_id,),
        )
        return affected > 0

    @classmethod
    async def mark_recipient_sent(cls, recipient_id: str) -> bool:
        affected = await execute_query(
            """
            UPDATE recipients
            SET delivered_at = NOW()
            WHERE id = %s AND delivered_at IS NULL
            """,
            (recipient_id,),
        )
        return affected > 0

    @classmethod
    async def record_recipient_failure(cls, recipient_id: str) -> int:
        """Count a failed send to one recipient; returns the new attempt count."""
        row = await fetch_one(
            """
            UPDATE recipients
            SET send_attempts = send_attempts + 1
            WHERE id = %s
            RETURNING send_attempts
            """,
            (recipient_id,),
        )
        return row["send_attempts"] if row else 0

    @classmethod
    async def update_message(
        cls,
        message_id: str,
        owner_id: str,
        message_type: MessageType,
        rule: DeliveryRule,
        recipients: Iterable[Recipient],
        text_content: str | None = None,
        media_path: str | None = None,
    ) -> bool:
        """
        Replace content, rule and recipients of a message that is not delivered.

        Returns False when the message is gone or was delivered meanwhile.
        Recipients are replaced, so their send state starts over.
        """
        recipients = list(recipients)

        async with db_pool.transaction() as conn:
            affected = await execute_query(
                """
                UPDATE messages
                SET type = %s, text_content = %s, media_path = %s
                WHERE id = %s AND owner_id = %s AND status <> 'delivered'
                """,
                (message_type.value, text_content, media_path, message_id, owner_id),
                connection=conn,
            )
            if not affected:
                return False

            await execute_query(
                """
                UPDATE delivery_rules
                SET mode = %s, deliver_at = %s, checkin_interval_days = %s, attempts_limit = %s
                WHERE message_id = %s
                """,
                (
                    rule.mode.value,
                    rule.deliver_at,
                    rule.checkin_interval_days,
                    rule.attempts_limit,
                    message_id,
                ),
                connection=conn,
            )
            await execute_query(
                "DELETE FROM recipients WHERE message_id = %s", (message_id,), connection=conn
            )
            await cls._insert_recipients(conn, message_id, recipients)

        rule.message_id = message_id
        logger.info(
            "Message updated",
            message_id=message_id,
            owner_id=owner_id,
            type=message_type.value,
            mode=rule.mode.value,
            recipient_count=len(recipients),
        )
        return True

    @classmethod
    async def delete_for_owner(cls, message_id: str, owner_id: str) -> MessageStatus | None:
        """
        Delete a draft or scheduled message with its rule and recipients.

        Returns the status the message had (None when it does not exist);
        delivered messages are returned untouched.
        """
        async with db_pool.transaction() as conn:
            row = await fetch_one(
                "SELECT status FROM messages WHERE id = %s AND owner_id = %s FOR UPDATE",
                (message_id, owner_id),
                connection=conn,
            )
            if not row:
                return None

            status = MessageStatus(row["status"])
            if status is MessageStatus.DELIVERED:
                return status

            await execute_query(
                "DELETE FROM recipients WHERE message_id = %s", (message_id,), connection=conn
            )
            await execute_query(
                "DELETE FROM delivery_rules WHERE message_id = %s", (message_id,), connection=conn
            )
            await execute_query("DELETE FROM messages WHERE id = %s", (message_id,), connection=conn)

        logger.info("Message deleted", message_id=message_id, owner_id=owner_id, status=status.value)
        return status

    @classmethod
    @with_db_retry()
    async def list_due_date_messages(cls, now: datetime, limit: int = 500) -> list[Message]:
        """Scheduled date-mode messages whose deliver_at has passed."""
        rows = await fetch_all(
            f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM messages m
            JOIN delivery_rules r ON r.message_id = m.id
            WHERE m.status = 'scheduled'
              AND r.mode = 'date'
              AND r.deliver_at <= %s
            ORDER BY r.deliver_at
            LIMIT %s
            """,
            (now, limit),
        )
        return await cls._hydrate(rows)

    @classmethod
    async def list_scheduled_checkin_messages(cls, owner_id: str) -> list[Message]:
        rows = await fetch_all(
            f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM messages m
            JOIN delivery_rules r ON r.message_id = m.id
            WHERE m.owner_id = %s
              AND m.status = 'scheduled'
              AND r.mode = 'checkin'
            ORDER BY m.created_at
            """,
            (owner_id,),
        )
        return await cls._hydrate(rows)

    @classmethod
    async def list_checkin_rules(cls, owner_id: str) -> list[DeliveryRule]:
        """Check-in rules of the owner's scheduled messages (drives the check-in policy)."""
        rows = await fetch_all(
            f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM messages m
            JOIN delivery_rules r ON r.message_id = m.id
            WHERE m.owner_id = %s
              AND m.status = 'scheduled'
              AND r.mode = 'checkin'
            """,
            (owner_id,),
        )
        rules = (cls._row_to_rule(row) for row in rows)
        return [rule for rule in rules if rule is not None]

    @classmethod
    @with_db_retry()
    async def list_absent_owners_pending_release(cls, limit: int = 200) -> list[str]:
        """
        Owners presumed absent whose release is unfinished.

        Either a check-in message is still scheduled or the trusted contacts
        have not been alerted yet.
        """
        rows = await fetch_all(
            """
            SELECT c.user_id
            FROM checkins c
            WHERE c.status = 'confirmed_absent'
              AND (
                  c.contacts_notified_at IS NULL
                  OR EXISTS (
                      SELECT 1
                      FROM messages m
                      JOIN delivery_rules r ON r.message_id = m.id
                      WHERE m.owner_id = c.user_id
                        AND m.status = 'scheduled'
                        AND r.mode = 'checkin'
                  )
              )
            ORDER BY c.updated_at
            LIMIT %s
            """,
            (limit,),
        )
        return [str(row["user_id"]) for row in rows]
