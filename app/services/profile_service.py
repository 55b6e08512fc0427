"""
Owner-editable profile details.
"""

import re

from app.infrastructure.observability.logging import get_logger
from app.repositories.profile_repository import ProfileRepository

logger = get_logger(__name__)

_PHONE_NOISE = re.compile(r"[^+\d\s]")
_SPACES = re.compile(r"\s+")
MIN_PHONE_LENGTH = 6


class ProfileValidationError(ValueError):
    pass


class ProfileNotFoundError(Exception):
    pass


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def normalize_phone(raw: str | None) -> str | None:
    """
    Keep digits, spaces and a leading '+'. Numbers must carry their country
    code; anything too short to be a number is dropped.
    """
    if raw is None:
        return None

    phone = _SPACES.sub(" ", _PHONE_NOISE.sub("", raw)).strip()
    if not phone:
        return None
    if not phone.startswith("+"):
        raise ProfileValidationError("Phone numbers must start with the country code, e.g. +34")
    if len(phone) < MIN_PHONE_LENGTH:
        return None
    return phone


class ProfileService:
    def __init__(self, profiles=ProfileRepository):
        self.profiles = profiles

    async def get_profile(self, user_id: str) -> dict:
        profile = await self.profiles.get_details(user_id)
        if not profile:
            raise ProfileNotFoundError(user_id)
        return profile

    async def update_profile(
        self,
        user_id: str,
        country: str,
        first_name: str | None = None,
        last_name: str | None = None,
        city: str | None = None,
        phone: str | None = None,
    ) -> dict:
        country = _clean(country)
        if not country:
            raise ProfileValidationError("Country is required")

        profile = await self.profiles.update_details(
            user_id,
            first_name=_clean(first_name),
            last_name=_clean(last_name),
            country=country,
            city=_clean(city),
            phone=normalize_phone(phone),
        )
        if not profile:
            raise ProfileNotFoundError(user_id)
        return profile


profile_service = ProfileService()
