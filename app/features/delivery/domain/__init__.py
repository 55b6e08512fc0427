"""
Domain layer for message delivery.
"""

from app.features.delivery.domain.models import (
    DeliveryMode,
    DeliveryRule,
    DeliveryRuleValidationError,
    Message,
    MessageStatus,
    MessageType,
    Recipient,
    TrustedContact,
    can_transition,
)

__all__ = [
    "DeliveryMode",
    "DeliveryRule",
    "DeliveryRuleValidationError",
    "Message",
    "MessageStatus",
    "MessageType",
    "Recipient",
    "TrustedContact",
    "can_transition",
]
