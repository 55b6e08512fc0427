"""
Message composition: validation, plan limits and persistence.

Creating or scheduling a check-in message also starts (or realigns) the
owner's check-in cycle; editing or deleting a scheduled message realigns it
with the rules that remain.
"""

from datetime import datetime

from app.features.checkin.services.checkin_service import checkin_service
from app.features.delivery.domain import (
    DeliveryMode,
    DeliveryRule,
    DeliveryRuleValidationError,
    Message,
    MessageStatus,
    MessageType,
    Recipient,
    TrustedContact,
)
from app.features.delivery.repository.message_repository import MessageRepository
from app.features.delivery.repository.trusted_contact_repository import TrustedContactRepository
from app.infrastructure.observability.logging import get_logger
from app.repositories.profile_repository import ProfileRepository
from app.services.plans import (
    ensure_can_add_trusted_contact,
    ensure_can_create_message,
    ensure_checkin_interval_allowed,
    ensure_type_allowed,
    get_plan_limits,
    resolve_attempts_limit,
)

logger = get_logger(__name__)


class MessageValidationError(ValueError):
    """Content that cannot be stored for the requested message type."""


class MessageNotFoundError(Exception):
    pass


class MessageStateError(Exception):
    """The requested status change is not a legal forward step."""


def build_rule(
    plan: str,
    mode: str,
    now: datetime,
    deliver_at: datetime | None = None,
    checkin_interval_days: int | None = None,
    attempts_limit: int | None = None,
) -> DeliveryRule:
    """
    Validate a requested delivery rule against mode exclusivity and the plan.
    """
    if mode == DeliveryMode.CHECKIN and checkin_interval_days is not None and deliver_at is None:
        ensure_checkin_interval_allowed(plan, checkin_interval_days)
        attempts_limit = resolve_attempts_limit(plan, attempts_limit)

    rule = DeliveryRule(
        mode=mode,
        deliver_at=deliver_at,
        checkin_interval_days=checkin_interval_days,
        attempts_limit=attempts_limit or 1,
    )

    if rule.mode is DeliveryMode.DATE and rule.deliver_at <= now:
        raise DeliveryRuleValidationError("deliver_at must be in the future")

    return rule


def validate_content(
    plan: str, message_type: MessageType, text_content: str | None, media_path: str | None
) -> None:
    if message_type is MessageType.TEXT:
        if not text_content or not text_content.strip():
            raise MessageValidationError("Text messages need content")
        max_chars = get_plan_limits(plan).max_text_chars
        if len(text_content) > max_chars:
            raise MessageValidationError(f"Text messages are limited to {max_chars} characters")
    elif not media_path:
        raise MessageValidationError(f"{message_type.value} messages need a media_path")


class MessageService:
    def __init__(
        self,
        messages=MessageRepository,
        contacts=TrustedContactRepository,
        profiles=ProfileRepository,
        checkins=None,
    ):
        self.messages = messages
        self.contacts = contacts
        self.profiles = profiles
        self.checkins = checkins or checkin_service

    async def create_message(
        self,
        owner_id: str,
        message_type: str,
        recipients: list[Recipient],
        rule_mode: str,
        now: datetime,
        text_content: str | None = None,
        media_path: str | None = None,
        deliver_at: datetime | None = None,
        checkin_interval_days: int | None = None,
        attempts_limit: int | None = None,
        draft: bool = False,
    ) -> Message:
        plan = await self.profiles.get_plan(owner_id)
        message_type = MessageType(message_type)

        ensure_type_allowed(plan, message_type)
        validate_content(plan, message_type, text_content, media_path)
        if not recipients:
            raise MessageValidationError("At least one recipient is required")

        rule = build_rule(
            plan,
            rule_mode,
            now,
            deliver_at=deliver_at,
            checkin_interval_days=checkin_interval_days,
            attempts_limit=attempts_limit,
        )

        ensure_can_create_message(plan, await self.messages.count_active(owner_id))

        status = MessageStatus.DRAFT if draft else MessageStatus.SCHEDULED
        message = await self.messages.create_message(
            owner_id,
            message_type,
            status,
            rule,
            recipients,
            text_content=text_content if message_type is MessageType.TEXT else None,
            media_path=media_path if message_type is not MessageType.TEXT else None,
        )

        if status is MessageStatus.SCHEDULED and rule.mode is DeliveryMode.CHECKIN:
            await self.checkins.ensure_initialized(owner_id, now)

        return message

    async def list_messages(self, owner_id: str) -> list[Message]:
        return await self.messages.list_for_owner(owner_id)

    async def schedule_message(self, owner_id: str, message_id: str, now: datetime) -> Message:
        """draft -> scheduled."""
        message = await self.messages.get_for_owner(message_id, owner_id)
        if message is None:
            raise MessageNotFoundError(message_id)

        if message.status is not MessageStatus.DRAFT:
            raise MessageStateError(f"Message is already {message.status.value}")

        if message.rule is None:
            raise DeliveryRuleValidationError("Message has no valid delivery rule")

        if message.rule.mode is DeliveryMode.DATE and message.rule.deliver_at <= now:
            raise DeliveryRuleValidationError("deliver_at must be in the future")

        if not await self.messages.mark_scheduled(message_id, owner_id):
            raise MessageStateError("Message was changed concurrently")

        message.status = MessageStatus.SCHEDULED
        logger.info("Message scheduled", message_id=message_id, owner_id=owner_id)

        if message.rule.mode is DeliveryMode.CHECKIN:
            await self.checkins.ensure_initialized(owner_id, now)

        return message

    async def update_message(
        self,
        owner_id: str,
        message_id: str,
        message_type: str,
        recipients: list[Recipient],
        rule_mode: str,
        now: datetime,
        text_content: str | None = None,
        media_path: str | None = None,
        deliver_at: datetime | None = None,
        checkin_interval_days: int | None = None,
        attempts_limit: int | None = None,
    ) -> Message:
        """
        Replace content, recipients and rule of a draft or scheduled message.

        The status is kept; editing a scheduled message realigns the owner's
        check-in cycle with the rules that remain.
        """
        message = await self.messages.get_for_owner(message_id, owner_id)
        if message is None:
            raise MessageNotFoundError(message_id)
        if message.status is MessageStatus.DELIVERED:
            raise MessageStateError("Delivered messages cannot be edited")

        plan = await self.profiles.get_plan(owner_id)
        message_type = MessageType(message_type)

        ensure_type_allowed(plan, message_type)
        validate_content(plan, message_type, text_content, media_path)
        if not recipients:
            raise MessageValidationError("At least one recipient is required")

        rule = build_rule(
            plan,
            rule_mode,
            now,
            deliver_at=deliver_at,
            checkin_interval_days=checkin_interval_days,
            attempts_limit=attempts_limit,
        )

        text_content = text_content if message_type is MessageType.TEXT else None
        media_path = media_path if message_type is not MessageType.TEXT else None
        if not await self.messages.update_message(
            message_id,
            owner_id,
            message_type,
            rule,
            recipients,
            text_content=text_content,
            media_path=media_path,
        ):
            raise MessageStateError("Message was delivered or removed concurrently")

        message.type = message_type
        message.text_content = text_content
        message.media_path = media_path
        message.rule = rule
        message.recipients = list(recipients)

        if message.status is MessageStatus.SCHEDULED:
            await self.checkins.sync_schedule(owner_id, now)

        return message

    async def delete_message(self, owner_id: str, message_id: str, now: datetime) -> None:
        """Remove a draft or scheduled message. Delivered messages stay as a record."""
        previous = await self.messages.delete_for_owner(message_id, owner_id)
        if previous is None:
            raise MessageNotFoundError(message_id)
        if previous is MessageStatus.DELIVERED:
            raise MessageStateError("Delivered messages cannot be deleted")

        if previous is MessageStatus.SCHEDULED:
            await self.checkins.sync_schedule(owner_id, now)

    async def list_trusted_contacts(self, user_id: str) -> list[TrustedContact]:
        return await self.contacts.list_for_user(user_id)

    async def add_trusted_contact(self, user_id: str, name: str, email: str) -> TrustedContact:
        plan = await self.profiles.get_plan(user_id)
        ensure_can_add_trusted_contact(plan, await self.contacts.count_for_user(user_id))
        return await self.contacts.create(user_id, name, email)

    async def remove_trusted_contact(self, user_id: str, contact_id: str) -> bool:
        return await self.contacts.delete(contact_id, user_id)


message_service = MessageService()
