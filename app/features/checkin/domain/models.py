"""
Domain models for the check-in (dead man's switch) feature.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from app.features.delivery.domain.models import DeliveryMode, DeliveryRule

DEFAULT_INTERVAL_DAYS = 30


class CheckinStatus(StrEnum):
    ACTIVE = "active"
    PENDING = "pending"
    CONFIRMED_ABSENT = "confirmed_absent"


class CheckinEvent(StrEnum):
    DUE_CHECK = "due_check"  # periodic sweep found the check-in due
    CONFIRM = "confirm"  # owner confirmed (dashboard or emailed link)
    RESET = "reset"  # administrator reset


@dataclass(frozen=True, slots=True)
class CheckinState:
    status: CheckinStatus
    attempts: int = 0
    last_confirmed_at: datetime | None = None
    next_due_at: datetime | None = None

    def is_due(self, now: datetime) -> bool:
        return (
            self.status is not CheckinStatus.CONFIRMED_ABSENT
            and self.next_due_at is not None
            and now >= self.next_due_at
        )


@dataclass(frozen=True, slots=True)
class CheckinPolicy:
    """Most restrictive cadence among a user's scheduled check-in rules."""

    interval_days: int
    attempts_limit: int


def policy_from_rules(rules: Iterable[DeliveryRule]) -> CheckinPolicy | None:
    """
    Derive the check-in policy from delivery rules.

    Returns None when there is no check-in rule, which leaves the state
    machine inert for date-only users.
    """
    checkin_rules = [rule for rule in rules if rule.mode is DeliveryMode.CHECKIN]
    if not checkin_rules:
        return None

    return CheckinPolicy(
        interval_days=min(rule.checkin_interval_days for rule in checkin_rules),
        attempts_limit=min(rule.attempts_limit for rule in checkin_rules),
    )


@dataclass(slots=True)
class Checkin:
    """
    A persisted checkins row.

    contacts_notified_at marks the current absence as announced to the
    trusted contacts; confirmations and resets clear it together with
    contact_alert_attempts.
    """

    user_id: str
    state: CheckinState
    id: str | None = None
    updated_at: datetime | None = None
    contacts_notified_at: datetime | None = None
    contact_alert_attempts: int = 0
