# app/models/api/message_request.py
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, EmailStr, Field


class RecipientRequest(BaseModel):
    name: str = Field("", max_length=100)
    email: EmailStr


class DeliveryRuleRequest(BaseModel):
    """Either deliver_at (mode=date) or checkin_interval_days (mode=checkin)."""

    mode: Literal["date", "checkin"]
    deliver_at: datetime | None = None
    checkin_interval_days: int | None = Field(None, ge=1)
    attempts_limit: int | None = Field(None, ge=1)


class MessageCreateRequest(BaseModel):
    """Request body for POST /messages."""

    type: Literal["text", "audio", "video"]
    text_content: str | None = None
    media_path: str | None = Field(None, max_length=500)
    recipients: list[RecipientRequest] = Field(..., min_length=1, max_length=20)
    rule: DeliveryRuleRequest
    draft: bool = False


class TrustedContactCreateRequest(BaseModel):
    """Request body for POST /trusted-contacts."""

    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr


class MessageUpdateRequest(BaseModel):
    """Request body for PUT /messages/{id}; replaces content, recipients and rule."""

    type: Literal["text", "audio", "video"]
    text_content: str | None = None
    media_path: str | None = Field(None, max_length=500)
    recipients: list[RecipientRequest] = Field(..., min_length=1, max_length=20)
    rule: DeliveryRuleRequest
