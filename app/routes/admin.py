"""
Admin API.

Every route is IP rate limited (60 requests / 60 s by default) before the
admin check runs, and every successful call is audited in the background.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status

from app.auth.admin import require_admin
from app.features.checkin.api.router import build_status_response
from app.features.checkin.services.checkin_service import checkin_service
from app.infrastructure.observability.logging import get_logger
from app.middleware.rate_limit_dependencies import rate_limit_admin
from app.models.api.checkin_response import CheckinStatusResponse
from app.models.api.user_response import AdminUserListResponse, AdminUserSummary
from app.repositories.profile_repository import ProfileRepository
from app.services.plans import normalize_plan
from app.utils.audit_helpers import audit_admin_action

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(rate_limit_admin)])
logger = get_logger(__name__)


@router.get("/users", response_model=AdminUserListResponse)
async def list_users(
    request: Request,
    background_tasks: BackgroundTasks,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin_id: str = Depends(require_admin),
):
    rows = await ProfileRepository.list_with_checkins(limit=limit, offset=offset)
    users = [
        AdminUserSummary(
            id=str(row["id"]),
            email=row.get("email"),
            plan=normalize_plan(row.get("plan")),
            is_admin=bool(row.get("is_admin")),
            created_at=row.get("created_at"),
            checkin_status=row.get("checkin_status"),
            checkin_attempts=row.get("checkin_attempts"),
            last_confirmed_at=row.get("last_confirmed_at"),
            next_due_at=row.get("next_due_at"),
        )
        for row in rows
    ]

    background_tasks.add_task(
        audit_admin_action,
        request=request,
        admin_id=admin_id,
        action="admin_users_listed",
        metadata={"count": len(users), "limit": limit, "offset": offset},
    )
    return AdminUserListResponse(users=users, limit=limit, offset=offset)


@router.post("/checkins/{user_id}/reset", response_model=CheckinStatusResponse)
async def reset_checkin(
    user_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    admin_id: str = Depends(require_admin),
):
    """Explicit reset, the only way out of confirmed_absent besides the owner confirming."""
    if not await ProfileRepository.get(user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    now = datetime.now(UTC)
    previous = await checkin_service.get_status(user_id)
    checkin = await checkin_service.reset(user_id, now)

    logger.info("Admin reset check-in", admin_id=admin_id, user_id=user_id)
    background_tasks.add_task(
        audit_admin_action,
        request=request,
        admin_id=admin_id,
        action="admin_checkin_reset",
        resource_type="checkin",
        resource_id=user_id,
        metadata={"previous_status": previous.state.status.value if previous else None},
    )
    return build_status_response(checkin, now)
