# app/models/api/checkin_request.py
from pydantic import BaseModel, Field


class CheckinLinkConfirmRequest(BaseModel):
    """Body for POST /checkin/confirm-link (token from the reminder email)."""

    token: str = Field(..., min_length=1, max_length=256)
