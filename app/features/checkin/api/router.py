"""
Check-in routes.

    GET  /checkin               current status
    POST /checkin/confirm       authenticated "I'm okay"
    POST /checkin/confirm-link  one-time token from a reminder email
"""

from datetime import UTC, datetime

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status

from app.auth.verify import current_user_id
from app.features.checkin.domain import Checkin, CheckinState, CheckinStatus
from app.features.checkin.services.checkin_service import InvalidCheckinTokenError, checkin_service
from app.features.checkin.state_machine import days_remaining
from app.infrastructure.observability.logging import get_logger
from app.middleware.rate_limit_dependencies import rate_limit_checkin_link
from app.models.api.checkin_request import CheckinLinkConfirmRequest
from app.models.api.checkin_response import CheckinStatusResponse
from app.utils.audit_helpers import audit_user_action, dispatch_security_event

router = APIRouter(prefix="/checkin", tags=["checkin"])
logger = get_logger(__name__)


def build_status_response(checkin: Checkin | None, now: datetime) -> CheckinStatusResponse:
    state = checkin.state if checkin else CheckinState(status=CheckinStatus.ACTIVE)
    return CheckinStatusResponse(
        status=state.status.value,
        attempts=state.attempts,
        last_confirmed_at=state.last_confirmed_at,
        next_due_at=state.next_due_at,
        is_overdue=state.next_due_at is not None and now >= state.next_due_at,
        days_remaining=days_remaining(state, now),
    )


@router.get("", response_model=CheckinStatusResponse)
async def get_checkin(user_id: str = Depends(current_user_id)):
    checkin = await checkin_service.get_status(user_id)
    return build_status_response(checkin, datetime.now(UTC))


@router.post("/confirm", response_model=CheckinStatusResponse)
async def confirm_checkin(
    request: Request,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(current_user_id),
):
    now = datetime.now(UTC)
    checkin = await checkin_service.confirm(user_id, now)

    background_tasks.add_task(
        audit_user_action,
        request=request,
        user_id=user_id,
        action="checkin_confirmed",
        resource_type="checkin",
        resource_id=user_id,
        metadata={"source": "dashboard"},
    )
    return build_status_response(checkin, now)


@router.post(
    "/confirm-link",
    response_model=CheckinStatusResponse,
    dependencies=[Depends(rate_limit_checkin_link)],
)
async def confirm_checkin_link(
    body: CheckinLinkConfirmRequest,
    request: Request,
    background_tasks: BackgroundTasks,
):
    now = datetime.now(UTC)
    try:
        checkin = await checkin_service.confirm_with_token(body.token, now)
    except InvalidCheckinTokenError as e:
        dispatch_security_event(
            request=request,
            event_type="invalid_checkin_token",
            severity="low",
            description="Check-in link with unknown, expired or used token",
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="This link is invalid or has expired.",
        ) from e

    background_tasks.add_task(
        audit_user_action,
        request=request,
        user_id=checkin.user_id,
        action="checkin_confirmed",
        resource_type="checkin",
        resource_id=checkin.user_id,
        metadata={"source": "email_link"},
    )
    return build_status_response(checkin, now)
