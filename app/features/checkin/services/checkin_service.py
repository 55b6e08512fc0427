"""
Check-in service.

Connects the pure state machine to storage, confirmation tokens, reminder
emails and the delivery engine. The periodic sweep persists every
transition with a compare-and-set on the state it read; confirmations
and resets write unconditionally.
"""

from datetime import datetime, timedelta
from enum import StrEnum

from app.config import settings
from app.features.checkin.domain import (
    Checkin,
    CheckinEvent,
    CheckinPolicy,
    CheckinState,
    CheckinStatus,
    policy_from_rules,
)
from app.features.checkin.repository.checkin_repository import CheckinRepository
from app.features.checkin.repository.token_repository import VerificationTokenRepository
from app.features.checkin.state_machine import realign, transition
from app.features.delivery.repository.message_repository import MessageRepository
from app.features.delivery.services.delivery_engine import DeliveryReport, delivery_engine
from app.infrastructure.audit import audit_logger
from app.infrastructure.observability.logging import get_logger
from app.repositories.profile_repository import ProfileRepository
from app.security.tokens import hash_token, issue_token
from app.services.email_service import email_service

logger = get_logger(__name__)


class InvalidCheckinTokenError(Exception):
    """The confirmation link is unknown, expired or already used."""


class SweepOutcome(StrEnum):
    UNCHANGED = "unchanged"
    LOST_RACE = "lost_race"
    REMINDED = "reminded"
    ABSENT = "absent"


class CheckinService:
    def __init__(
        self,
        checkins=CheckinRepository,
        tokens=VerificationTokenRepository,
        messages=MessageRepository,
        profiles=ProfileRepository,
        engine=None,
        sender=None,
        audit=None,
        default_interval_days: int | None = None,
        token_ttl_hours: int | None = None,
    ):
        self.checkins = checkins
        self.tokens = tokens
        self.messages = messages
        self.profiles = profiles
        self.engine = engine or delivery_engine
        self.sender = sender or email_service
        self.audit = audit or audit_logger
        self.default_interval_days = default_interval_days or settings.CHECKIN_DEFAULT_INTERVAL_DAYS
        self.token_ttl_hours = token_ttl_hours or settings.CHECKIN_TOKEN_TTL_HOURS

    async def get_policy(self, user_id: str) -> CheckinPolicy | None:
        return policy_from_rules(await self.messages.list_checkin_rules(user_id))

    async def get_status(self, user_id: str) -> Checkin | None:
        return await self.checkins.get(user_id)

    async def _write_confirmed(self, user_id: str, event: CheckinEvent, now: datetime) -> Checkin:
        current = await self.checkins.get(user_id)
        state = current.state if current else CheckinState(status=CheckinStatus.ACTIVE)
        policy = await self.get_policy(user_id)

        new_state = transition(
            state, event, now, policy, default_interval_days=self.default_interval_days
        )
        saved = await self.checkins.save(user_id, new_state)

        logger.info(
            "Check-in confirmed" if event is CheckinEvent.CONFIRM else "Check-in reset",
            user_id=user_id,
            previous_status=state.status.value,
            next_due_at=str(new_state.next_due_at),
        )
        return saved

    async def confirm(self, user_id: str, now: datetime) -> Checkin:
        """
        Owner confirmation from the dashboard.

        Valid from every state. Leaving confirmed_absent does not undo
        deliveries that already happened.
        """
        return await self._write_confirmed(user_id, CheckinEvent.CONFIRM, now)

    async def confirm_with_token(self, raw_token: str, now: datetime) -> Checkin:
        """Redeem an emailed confirmation link (single use)."""
        if not raw_token:
            raise InvalidCheckinTokenError("Missing token")

        user_id = await self.tokens.claim(hash_token(raw_token), now)
        if user_id is None:
            raise InvalidCheckinTokenError("Invalid or expired token")

        return await self.confirm(user_id, now)

    async def reset(self, user_id: str, now: datetime) -> Checkin:
        """Administrative reset back to active."""
        return await self._write_confirmed(user_id, CheckinEvent.RESET, now)

    async def ensure_initialized(self, user_id: str, now: datetime) -> Checkin:
        """
        Called after a check-in rule is created.

        Creates the user's check-in (active, confirmed now) when missing,
        otherwise re-derives next_due_at from the new most restrictive interval.
        """
        policy = await self.get_policy(user_id)
        current = await self.checkins.get(user_id)

        if current is None:
            initial = transition(
                CheckinState(status=CheckinStatus.ACTIVE),
                CheckinEvent.CONFIRM,
                now,
                policy,
                default_interval_days=self.default_interval_days,
            )
            return await self.checkins.create_if_missing(user_id, initial)

        realigned = realign(current.state, policy)
        if realigned is not current.state and await self.checkins.compare_and_set(
            user_id, current.state, realigned
        ):
            current.state = realigned
            logger.info(
                "Check-in schedule realigned",
                user_id=user_id,
                next_due_at=str(realigned.next_due_at),
            )
        return current

    async def sync_schedule(self, user_id: str, now: datetime) -> Checkin | None:
        """
        Called after a check-in message was edited or deleted.

        With check-in rules left the cycle is created or realigned; without
        any the row is left as is and the sweep no longer selects it.
        """
        if await self.get_policy(user_id) is None:
            return await self.checkins.get(user_id)
        return await self.ensure_initialized(user_id, now)

    async def advance(self, checkin: Checkin, now: datetime) -> SweepOutcome:
        """
        Apply one due check to a check-in the sweep found due.
        """
        user_id = checkin.user_id
        policy = await self.get_policy(user_id)

        new_state = transition(
            checkin.state,
            CheckinEvent.DUE_CHECK,
            now,
            policy,
            default_interval_days=self.default_interval_days,
        )
        if new_state is checkin.state:
            return SweepOutcome.UNCHANGED

        if not await self.checkins.compare_and_set(user_id, checkin.state, new_state):
            logger.info("Check-in changed concurrently, skipping", user_id=user_id)
            return SweepOutcome.LOST_RACE

        if new_state.status is CheckinStatus.PENDING:
            logger.info(
                "Check-in missed",
                user_id=user_id,
                attempts=new_state.attempts,
                attempts_limit=policy.attempts_limit,
            )
            await self._send_reminder(user_id, new_state, policy, now)
            return SweepOutcome.REMINDED

        logger.warning("Owner presumed absent", user_id=user_id, attempts=new_state.attempts)
        await self.audit.log(
            actor_id=None,
            action="checkin_confirmed_absent",
            resource_type="checkin",
            resource_id=user_id,
            metadata={"attempts": new_state.attempts, "attempts_limit": policy.attempts_limit},
        )
        await self.release_messages(user_id, now)
        return SweepOutcome.ABSENT

    async def release_messages(self, user_id: str, now: datetime) -> DeliveryReport:
        """
        Hand an absent owner to the delivery engine.

        Whatever fails here is picked up again by the retry sweep of the
        delivery job while the check-in stays confirmed_absent.
        """
        return await self.engine.release_checkin_messages(user_id, now)

    async def _send_reminder(
        self, user_id: str, state: CheckinState, policy: CheckinPolicy, now: datetime
    ) -> bool:
        email = await self.profiles.get_email(user_id)
        if not email:
            logger.warning("No email on profile, reminder not sent", user_id=user_id)
            return False

        issued = issue_token()
        token_id = await self.tokens.create(
            user_id, issued.token_hash, now + timedelta(hours=self.token_ttl_hours)
        )

        sent = await self.sender.send_checkin_reminder(
            email,
            settings.checkin_confirm_url(issued.raw_token),
            attempt=state.attempts,
            attempts_limit=policy.attempts_limit,
            token_id=token_id,
        )
        if not sent:
            logger.warning("Check-in reminder not delivered", user_id=user_id, attempts=state.attempts)
        return sent


checkin_service = CheckinService()
