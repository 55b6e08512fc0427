"""
Delivery trigger engine.

Decides which scheduled messages are eligible and releases them:

- date rule:    deliver_at has passed
- checkin rule: the owner's check-in reached confirmed_absent

Each recipient's copy is recorded as sent when it goes out, so a later
run only retries the recipients that failed. A recipient that keeps
failing is given up after DELIVERY_MAX_SEND_ATTEMPTS runs. Once no
recipient is left to retry the message moves scheduled -> delivered with
a conditional update, which happens once even when two runs overlap.
"""

from dataclasses import asdict, dataclass
from datetime import datetime

from app.config import settings
from app.db.helpers import DatabaseError
from app.features.checkin.domain import Checkin, CheckinStatus
from app.features.checkin.repository.checkin_repository import CheckinRepository
from app.features.delivery.domain import DeliveryMode, Message, MessageStatus
from app.features.delivery.repository.message_repository import MessageRepository
from app.features.delivery.repository.trusted_contact_repository import TrustedContactRepository
from app.infrastructure.audit import audit_logger
from app.infrastructure.observability.logging import get_logger
from app.repositories.profile_repository import ProfileRepository
from app.services.email_service import email_service

logger = get_logger(__name__)


@dataclass
class DeliveryReport:
    considered: int = 0
    delivered: int = 0
    already_delivered: int = 0
    send_failures: int = 0
    storage_errors: int = 0
    skipped: int = 0
    trusted_contacts_notified: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def is_eligible(message: Message, now: datetime, checkin_status: CheckinStatus | None = None) -> bool:
    """
    Pure eligibility check; evaluating it twice gives the same answer.
    """
    if message.status is not MessageStatus.SCHEDULED or message.rule is None:
        return False

    if message.rule.mode is DeliveryMode.DATE:
        return message.rule.is_due(now)

    return checkin_status is CheckinStatus.CONFIRMED_ABSENT


class DeliveryEngine:
    def __init__(
        self,
        messages=MessageRepository,
        contacts=TrustedContactRepository,
        profiles=ProfileRepository,
        checkins=CheckinRepository,
        sender=None,
        audit=None,
        max_send_attempts: int | None = None,
    ):
        self.messages = messages
        self.contacts = contacts
        self.profiles = profiles
        self.checkins = checkins
        self.sender = sender or email_service
        self.audit = audit or audit_logger
        self.max_send_attempts = max_send_attempts or settings.DELIVERY_MAX_SEND_ATTEMPTS

    async def deliver_due_date_messages(self, now: datetime) -> DeliveryReport:
        """Release every scheduled date-mode message whose time has come."""
        report = DeliveryReport()
        due = await self.messages.list_due_date_messages(now)

        for message in due:
            await self._deliver(message, now, None, report)

        if due:
            logger.info("Date-triggered delivery pass finished", **report.to_dict())
        return report

    async def release_checkin_messages(self, user_id: str, now: datetime) -> DeliveryReport:
        """
        Release the scheduled check-in messages of an owner presumed absent
        and alert their trusted contacts.

        Safe to call repeatedly: delivered messages and recipients are not
        sent again, and the alerts go out until the check-in row records
        them as sent for the current absence.
        """
        report = DeliveryReport()

        checkin = await self.checkins.get(user_id)
        status = checkin.state.status if checkin else None
        if status is not CheckinStatus.CONFIRMED_ABSENT:
            logger.warning(
                "Check-in release requested for owner not absent",
                user_id=user_id,
                status=status.value if status else None,
            )
            return report

        messages = await self.messages.list_scheduled_checkin_messages(user_id)
        for message in messages:
            await self._deliver(message, now, status, report)

        if checkin.contacts_notified_at is None:
            report.trusted_contacts_notified += await self._notify_trusted_contacts(checkin, now)

        logger.info("Check-in delivery pass finished", user_id=user_id, **report.to_dict())
        return report

    async def _deliver(
        self,
        message: Message,
        now: datetime,
        checkin_status: CheckinStatus | None,
        report: DeliveryReport,
    ) -> None:
        report.considered += 1

        if not is_eligible(message, now, checkin_status):
            report.skipped += 1
            return

        if not message.recipients:
            logger.warning("Scheduled message has no recipients", message_id=message.id)
            report.skipped += 1
            return

        try:
            sender_label = await self._sender_label(message.owner_id)

            retrying = 0
            for recipient in message.recipients:
                if not recipient.is_pending(self.max_send_attempts):
                    continue

                if await self.sender.send_message_delivery(recipient.email, message, sender_label):
                    await self.messages.mark_recipient_sent(recipient.id)
                    recipient.delivered_at = now
                    continue

                recipient.send_attempts = await self.messages.record_recipient_failure(recipient.id)
                if recipient.send_attempts >= self.max_send_attempts:
                    logger.error(
                        "Recipient given up after repeated send failures",
                        message_id=message.id,
                        recipient_id=recipient.id,
                        attempts=recipient.send_attempts,
                    )
                else:
                    retrying += 1

            if retrying:
                report.send_failures += 1
                logger.warning(
                    "Message left scheduled after send failures",
                    message_id=message.id,
                    failed_recipients=retrying,
                    total_recipients=len(message.recipients),
                )
                return

            if not await self.messages.mark_delivered(message.id):
                report.already_delivered += 1
                logger.info("Message already delivered by another run", message_id=message.id)
                return

        except DatabaseError as e:
            report.storage_errors += 1
            logger.error("Delivery failed on storage error", message_id=message.id, error=str(e))
            return

        abandoned = sum(1 for r in message.recipients if r.delivered_at is None)
        report.delivered += 1
        logger.info(
            "Message delivered",
            message_id=message.id,
            owner_id=message.owner_id,
            mode=message.rule.mode.value,
            recipient_count=len(message.recipients),
            abandoned_recipients=abandoned,
        )
        await self.audit.log(
            actor_id=None,
            action="message_delivered",
            resource_type="message",
            resource_id=message.id,
            metadata={
                "owner_id": message.owner_id,
                "mode": message.rule.mode.value,
                "recipient_count": len(message.recipients),
                "abandoned_recipients": abandoned,
            },
        )

    async def _sender_label(self, owner_id: str) -> str | None:
        profile = await self.profiles.get(owner_id)
        if not profile:
            return None
        return profile.get("display_name") or profile.get("email")

    async def _notify_trusted_contacts(self, checkin: Checkin, now: datetime) -> int:
        """
        Alert every trusted contact of an absent owner.

        The absence is only marked as announced once all alerts went out,
        or once the failing ones ran out of attempts.
        """
        user_id = checkin.user_id
        contacts = await self.contacts.list_for_user(user_id)

        owner_email = await self.profiles.get_email(user_id) if contacts else None
        notified = 0
        for contact in contacts:
            if await self.sender.send_trusted_contact_alert(contact, owner_email):
                notified += 1

        failed = len(contacts) - notified
        if failed:
            attempts = await self.checkins.record_contact_alert_failure(user_id)
            if attempts < self.max_send_attempts:
                logger.warning(
                    "Trusted contact alerts incomplete, will retry",
                    user_id=user_id,
                    notified=notified,
                    failed=failed,
                    attempts=attempts,
                )
                return notified
            logger.error(
                "Trusted contact alerts given up after repeated failures",
                user_id=user_id,
                failed=failed,
                attempts=attempts,
            )

        await self.checkins.mark_contacts_notified(user_id, now)
        checkin.contacts_notified_at = now
        logger.info(
            "Trusted contacts notified", user_id=user_id, notified=notified, total=len(contacts)
        )
        return notified


delivery_engine = DeliveryEngine()
