"""
Plan limits for the free and pro tiers.

FREE:
- 1 active (not yet delivered) message
- text or audio
- 30 day check-in only, 1 reminder before absence is presumed
- 1 trusted contact

PRO:
- unlimited messages, text + audio + video
- 30/60/90 day check-ins, up to 3 reminders
- up to 3 trusted contacts
"""

import math
from dataclasses import dataclass
from typing import Literal

from app.features.delivery.domain.models import MessageType

Plan = Literal["free", "pro"]


class PlanLimitError(Exception):
    """Raised when a request exceeds what the caller's plan allows."""

    def __init__(self, message: str, limit: int | float | list | None = None):
        super().__init__(message)
        self.message = message
        self.limit = limit


@dataclass(frozen=True, slots=True)
class PlanLimits:
    max_active_messages: float
    allowed_types: frozenset[MessageType]
    allowed_checkin_intervals: tuple[int, ...]
    max_reminders: int
    max_trusted_contacts: int
    max_text_chars: int


PLAN_LIMITS: dict[str, PlanLimits] = {
    "free": PlanLimits(
        max_active_messages=1,
        allowed_types=frozenset({MessageType.TEXT, MessageType.AUDIO}),
        allowed_checkin_intervals=(30,),
        max_reminders=1,
        max_trusted_contacts=1,
        max_text_chars=1000,
    ),
    "pro": PlanLimits(
        max_active_messages=math.inf,
        allowed_types=frozenset({MessageType.TEXT, MessageType.AUDIO, MessageType.VIDEO}),
        allowed_checkin_intervals=(30, 60, 90),
        max_reminders=3,
        max_trusted_contacts=3,
        max_text_chars=5000,
    ),
}


def normalize_plan(plan: str | None) -> Plan:
    return "pro" if plan == "pro" else "free"


def get_plan_limits(plan: str | None) -> PlanLimits:
    """Limits for ``plan``; unknown or missing plans get the free tier."""
    return PLAN_LIMITS[normalize_plan(plan)]


def ensure_can_create_message(plan: str | None, active_message_count: int) -> None:
    limits = get_plan_limits(plan)
    if active_message_count >= limits.max_active_messages:
        raise PlanLimitError("Message limit reached.", limit=limits.max_active_messages)


def ensure_type_allowed(plan: str | None, message_type: MessageType) -> None:
    if message_type not in get_plan_limits(plan).allowed_types:
        raise PlanLimitError(f"{message_type.value} messages are not available on your plan")


def ensure_checkin_interval_allowed(plan: str | None, interval_days: int) -> None:
    limits = get_plan_limits(plan)
    if interval_days not in limits.allowed_checkin_intervals:
        raise PlanLimitError(
            f"{interval_days}-day check-in is not available on your plan",
            limit=list(limits.allowed_checkin_intervals),
        )


def resolve_attempts_limit(plan: str | None, requested: int | None) -> int:
    """
    Attempts limit for a new check-in rule.

    Every reminder is one missed check; the check after the last reminder
    presumes absence, so the ceiling is max_reminders + 1. Defaults to the
    ceiling; explicit values above it are rejected.
    """
    ceiling = get_plan_limits(plan).max_reminders + 1
    if requested is None:
        return ceiling
    if requested > ceiling:
        raise PlanLimitError(
            f"Your plan allows at most {ceiling - 1} reminders before release", limit=ceiling
        )
    return requested


def ensure_can_add_trusted_contact(plan: str | None, current_count: int) -> None:
    limits = get_plan_limits(plan)
    if current_count >= limits.max_trusted_contacts:
        raise PlanLimitError(
            f"Trusted contact limit reached ({limits.max_trusted_contacts}).",
            limit=limits.max_trusted_contacts,
        )
