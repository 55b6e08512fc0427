"""
Domain layer for the check-in feature.
"""

from app.features.checkin.domain.models import (
    DEFAULT_INTERVAL_DAYS,
    Checkin,
    CheckinEvent,
    CheckinPolicy,
    CheckinState,
    CheckinStatus,
    policy_from_rules,
)

__all__ = [
    "DEFAULT_INTERVAL_DAYS",
    "Checkin",
    "CheckinEvent",
    "CheckinPolicy",
    "CheckinState",
    "CheckinStatus",
    "policy_from_rules",
]
