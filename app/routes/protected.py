"""
protected.py
------------
Purpose:
    Endpoints that require a valid Supabase Auth JWT.

    - `/me` returns the caller's profile, JWT metadata and check-in status.

Usage:
    Call `/me` with:
         Authorization: Bearer <access_token>
    where <access_token> is from Supabase Auth sign-in.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, status

from app.auth.verify import auth_dependency
from app.features.checkin.api.router import build_status_response
from app.features.checkin.services.checkin_service import checkin_service
from app.infrastructure.observability.logging import get_logger
from app.models.api.user_response import AuthMeta, MeResponse, ProfileSummary
from app.repositories.profile_repository import ProfileRepository
from app.services.plans import normalize_plan

router = APIRouter()
logger = get_logger(__name__)


@router.get("/me", response_model=MeResponse)
async def me(claims: dict = Depends(auth_dependency)):
    user_id = claims.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    profile = await ProfileRepository.get(user_id)
    if not profile:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User profile not found")

    checkin = await checkin_service.get_status(user_id)

    auth = AuthMeta(
        user_id=user_id,
        email=claims.get("email"),
        role=claims.get("role", "authenticated"),
        aud=claims.get("aud"),
        iat=claims.get("iat"),
        exp=claims.get("exp"),
    )

    return MeResponse(
        profile=ProfileSummary(
            id=str(profile["id"]),
            email=profile.get("email"),
            display_name=profile.get("display_name"),
            plan=normalize_plan(profile.get("plan")),
            is_admin=bool(profile.get("is_admin")),
            created_at=profile.get("created_at"),
        ),
        auth=auth,
        checkin=build_status_response(checkin, datetime.now(UTC)) if checkin else None,
    )
