# app/models/api/profile_request.py
from pydantic import BaseModel, Field


class ProfileUpdateRequest(BaseModel):
    """Request body for PUT /profile. Email changes go through the identity provider."""

    first_name: str | None = Field(None, max_length=100)
    last_name: str | None = Field(None, max_length=100)
    country: str = Field(..., max_length=100)
    city: str | None = Field(None, max_length=100)
    phone: str | None = Field(None, max_length=40)
