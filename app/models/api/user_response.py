# app/models/api/user_response.py
from datetime import datetime

from pydantic import BaseModel, Field

from app.models.api.checkin_response import CheckinStatusResponse
from app.services.plans import normalize_plan


class AuthMeta(BaseModel):
    """Auth metadata extracted from JWT claims."""

    user_id: str
    email: str | None = None
    role: str | None = "authenticated"
    aud: str | None = None
    iat: int | None = None
    exp: int | None = None


class ProfileSummary(BaseModel):
    id: str
    email: str | None = None
    display_name: str | None = None
    plan: str = "free"
    is_admin: bool = False
    created_at: datetime | None = None


class MeResponse(BaseModel):
    """API response for /me."""

    profile: ProfileSummary = Field(..., description="Profile row")
    auth: AuthMeta = Field(..., description="JWT authentication metadata")
    checkin: CheckinStatusResponse | None = None


class AdminUserSummary(BaseModel):
    id: str
    email: str | None = None
    plan: str
    is_admin: bool = False
    created_at: datetime | None = None
    checkin_status: str | None = None
    checkin_attempts: int | None = None
    last_confirmed_at: datetime | None = None
    next_due_at: datetime | None = None


class AdminUserListResponse(BaseModel):
    users: list[AdminUserSummary]
    limit: int
    offset: int


class PortalSessionResponse(BaseModel):
    url: str


class ProfileResponse(BaseModel):
    """API response for GET/PUT /profile."""

    id: str
    email: str | None = None
    display_name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    country: str | None = None
    city: str | None = None
    phone: str | None = None
    plan: str = "free"
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict) -> "ProfileResponse":
        return cls(
            id=str(row["id"]),
            email=row.get("email"),
            display_name=row.get("display_name"),
            first_name=row.get("first_name"),
            last_name=row.get("last_name"),
            country=row.get("country"),
            city=row.get("city"),
            phone=row.get("phone"),
            plan=normalize_plan(row.get("plan")),
            created_at=row.get("created_at"),
        )
