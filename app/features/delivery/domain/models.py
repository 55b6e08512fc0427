"""
Domain models for message delivery.

Plain dataclasses shared by the repositories, the delivery engine and the
API layer. DeliveryRule validates its own mode/field invariant on
construction so an invalid rule can never reach persistence.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class MessageType(StrEnum):
    TEXT = "text"
    AUDIO = "audio"
    VIDEO = "video"


class MessageStatus(StrEnum):
    """Monotonic: draft -> scheduled -> delivered, never backwards."""

    DRAFT = "draft"
    SCHEDULED = "scheduled"
    DELIVERED = "delivered"


class DeliveryMode(StrEnum):
    DATE = "date"
    CHECKIN = "checkin"


STATUS_ORDER = {
    MessageStatus.DRAFT: 0,
    MessageStatus.SCHEDULED: 1,
    MessageStatus.DELIVERED: 2,
}


def can_transition(current: MessageStatus, target: MessageStatus) -> bool:
    """Only single forward steps are legal."""
    return STATUS_ORDER[target] == STATUS_ORDER[current] + 1


class DeliveryRuleValidationError(ValueError):
    """Raised when a delivery rule violates the mode/field invariant."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


@dataclass(slots=True)
class DeliveryRule:
    """
    How and when a message is released.

    mode=date requires deliver_at and no interval; mode=checkin requires an
    interval and no deliver_at.
    """

    mode: DeliveryMode
    deliver_at: datetime | None = None
    checkin_interval_days: int | None = None
    attempts_limit: int = 1
    message_id: str | None = None
    id: str | None = None

    def __post_init__(self):
        try:
            self.mode = DeliveryMode(self.mode)
        except ValueError as e:
            raise DeliveryRuleValidationError(f"Unknown delivery mode: {self.mode!r}") from e

        if self.mode is DeliveryMode.DATE:
            if self.deliver_at is None:
                raise DeliveryRuleValidationError("Date delivery requires deliver_at")
            if self.checkin_interval_days is not None:
                raise DeliveryRuleValidationError(
                    "Date delivery cannot also set checkin_interval_days"
                )
            if self.deliver_at.tzinfo is None:
                raise DeliveryRuleValidationError("deliver_at must be timezone-aware")
        else:
            if self.checkin_interval_days is None:
                raise DeliveryRuleValidationError("Check-in delivery requires checkin_interval_days")
            if self.deliver_at is not None:
                raise DeliveryRuleValidationError("Check-in delivery cannot also set deliver_at")
            if self.checkin_interval_days < 1:
                raise DeliveryRuleValidationError("checkin_interval_days must be at least 1")

        if self.attempts_limit < 1:
            raise DeliveryRuleValidationError("attempts_limit must be at least 1")

    def is_due(self, now: datetime) -> bool:
        """Date rules are due once deliver_at has passed; check-in rules never by date."""
        return self.mode is DeliveryMode.DATE and now >= self.deliver_at


@dataclass(slots=True)
class Recipient:
    """
    Per-message addressee.

    delivered_at is set once this recipient's copy went out; send_attempts
    counts the delivery runs in which sending to it failed.
    """

    name: str
    email: str
    message_id: str | None = None
    id: str | None = None
    delivered_at: datetime | None = None
    send_attempts: int = 0

    def is_pending(self, max_attempts: int) -> bool:
        return self.delivered_at is None and self.send_attempts < max_attempts


@dataclass(slots=True)
class TrustedContact:
    """Recipient of last resort, bound to the user rather than a message."""

    id: str
    user_id: str
    name: str
    email: str
    created_at: datetime | None = None


@dataclass(slots=True)
class Message:
    id: str
    owner_id: str
    type: MessageType
    status: MessageStatus
    text_content: str | None = None
    media_path: str | None = None
    created_at: datetime | None = None
    rule: DeliveryRule | None = None
    recipients: list[Recipient] = field(default_factory=list)

    def __repr__(self) -> str:
        # text_content stays out of reprs and therefore out of tracebacks
        return (
            f"Message(id={self.id!r}, owner_id={self.owner_id!r}, "
            f"type={self.type.value}, status={self.status.value})"
        )
