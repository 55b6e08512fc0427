# app/models/api/checkin_response.py
from datetime import datetime

from pydantic import BaseModel


class CheckinStatusResponse(BaseModel):
    status: str
    attempts: int
    last_confirmed_at: datetime | None = None
    next_due_at: datetime | None = None
    is_overdue: bool
    days_remaining: int
