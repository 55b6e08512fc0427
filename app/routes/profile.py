"""
Profile details of the caller.

    GET /profile    names, location and phone
    PUT /profile    replace them (country is required)
"""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status

from app.auth.verify import current_user_id
from app.infrastructure.observability.logging import get_logger
from app.models.api.profile_request import ProfileUpdateRequest
from app.models.api.user_response import ProfileResponse
from app.services.profile_service import (
    ProfileNotFoundError,
    ProfileValidationError,
    profile_service,
)
from app.utils.audit_helpers import audit_user_action

router = APIRouter(tags=["profile"])
logger = get_logger(__name__)


@router.get("/profile", response_model=ProfileResponse)
async def get_profile(user_id: str = Depends(current_user_id)):
    try:
        profile = await profile_service.get_profile(user_id)
    except ProfileNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User profile not found") from e
    return ProfileResponse.from_row(profile)


@router.put("/profile", response_model=ProfileResponse)
async def update_profile(
    body: ProfileUpdateRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(current_user_id),
):
    try:
        profile = await profile_service.update_profile(
            user_id,
            body.country,
            first_name=body.first_name,
            last_name=body.last_name,
            city=body.city,
            phone=body.phone,
        )
    except ProfileValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except ProfileNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User profile not found") from e

    background_tasks.add_task(
        audit_user_action,
        request=request,
        user_id=user_id,
        action="profile_updated",
        resource_type="profile",
        resource_id=user_id,
        metadata={"fields": sorted(body.model_fields_set)},
    )
    return ProfileResponse.from_row(profile)
