"""
Cron endpoints: one job run per request.

Guarded by CRON_SECRET, sent either as ``Authorization: Bearer <secret>``
or as the ``x-cron-secret`` header.
"""

import hmac

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.jobs.checkin_job import run_checkin_job
from app.jobs.message_delivery_job import run_message_delivery_job
from app.jobs.token_cleanup_job import run_token_cleanup_job
from app.utils.audit_helpers import dispatch_security_event

router = APIRouter(prefix="/cron", tags=["cron"])
logger = get_logger(__name__)


def _presented_secret(request: Request) -> str | None:
    auth_header = request.headers.get("authorization", "")
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()
    return request.headers.get("x-cron-secret")


async def verify_cron_secret(request: Request) -> None:
    expected = settings.CRON_SECRET
    if not expected:
        if settings.is_production():
            logger.error("CRON_SECRET not configured in production")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Cron not configured"
            )
        return

    presented = _presented_secret(request)
    if not presented or not hmac.compare_digest(presented.encode(), expected.encode()):
        logger.warning("Cron call with bad secret", path=request.url.path)
        dispatch_security_event(
            request=request,
            event_type="cron_unauthorized",
            severity="high",
            description=f"Bad cron secret on {request.url.path}",
        )
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.get("/process-checkins", dependencies=[Depends(verify_cron_secret)])
async def process_checkins():
    return await run_checkin_job()


@router.get("/process-messages", dependencies=[Depends(verify_cron_secret)])
async def process_messages():
    return await run_message_delivery_job()


@router.get("/expire-tokens", dependencies=[Depends(verify_cron_secret)])
async def expire_tokens():
    return await run_token_cleanup_job()
