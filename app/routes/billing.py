"""
Billing routes: Stripe billing portal and webhook.
"""

from fastapi import APIRouter, Depends, HTTPException, Request

from app.auth.verify import current_user_id
from app.infrastructure.observability.logging import get_logger
from app.models.api.user_response import PortalSessionResponse
from app.services.billing_service import BillingError, billing_service

router = APIRouter(prefix="/billing", tags=["billing"])
logger = get_logger(__name__)


@router.post("/portal", response_model=PortalSessionResponse)
async def create_portal_session(user_id: str = Depends(current_user_id)):
    try:
        url = await billing_service.create_portal_session(user_id)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e)) from e
    return PortalSessionResponse(url=url)


@router.post("/webhook")
async def stripe_webhook(request: Request):
    payload = await request.body()
    try:
        event = billing_service.construct_event(payload, request.headers.get("stripe-signature"))
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e)) from e

    plan = await billing_service.handle_event(event)
    logger.info("Stripe webhook processed", event_type=event.get("type"), plan=plan)
    return {"received": True}
