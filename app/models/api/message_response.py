# app/models/api/message_response.py
from datetime import datetime

from pydantic import BaseModel

from app.features.delivery.domain import DeliveryRule, Message, TrustedContact


class RecipientResponse(BaseModel):
    id: str | None = None
    name: str
    email: str


class DeliveryRuleResponse(BaseModel):
    mode: str
    deliver_at: datetime | None = None
    checkin_interval_days: int | None = None
    attempts_limit: int

    @classmethod
    def from_rule(cls, rule: DeliveryRule) -> "DeliveryRuleResponse":
        return cls(
            mode=rule.mode.value,
            deliver_at=rule.deliver_at,
            checkin_interval_days=rule.checkin_interval_days,
            attempts_limit=rule.attempts_limit,
        )


class MessageResponse(BaseModel):
    id: str
    type: str
    status: str
    text_content: str | None = None
    media_path: str | None = None
    created_at: datetime | None = None
    rule: DeliveryRuleResponse | None = None
    recipients: list[RecipientResponse] = []

    @classmethod
    def from_message(cls, message: Message) -> "MessageResponse":
        return cls(
            id=message.id,
            type=message.type.value,
            status=message.status.value,
            text_content=message.text_content,
            media_path=message.media_path,
            created_at=message.created_at,
            rule=DeliveryRuleResponse.from_rule(message.rule) if message.rule else None,
            recipients=[
                RecipientResponse(id=r.id, name=r.name, email=r.email) for r in message.recipients
            ],
        )


class MessageListResponse(BaseModel):
    messages: list[MessageResponse]
    total: int


class TrustedContactResponse(BaseModel):
    id: str
    name: str
    email: str
    created_at: datetime | None = None

    @classmethod
    def from_contact(cls, contact: TrustedContact) -> "TrustedContactResponse":
        return cls(
            id=contact.id, name=contact.name, email=contact.email, created_at=contact.created_at
        )
