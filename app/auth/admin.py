"""
Admin guard: an authenticated caller whose profile has is_admin = true.
"""

from fastapi import Depends, HTTPException, Request, status

from app.auth.verify import current_user_id
from app.infrastructure.observability.logging import get_logger
from app.repositories.profile_repository import ProfileRepository
from app.utils.audit_helpers import dispatch_security_event

logger = get_logger(__name__)


async def require_admin(request: Request, user_id: str = Depends(current_user_id)) -> str:
    """
    Returns the admin's user id, or raises 403.
    """
    if not await ProfileRepository.is_admin(user_id):
        logger.warning("Non-admin attempted admin access", user_id=user_id, path=request.url.path)
        dispatch_security_event(
            request=request,
            event_type="forbidden_admin_access",
            severity="medium",
            description=f"Non-admin user called {request.url.path}",
            user_id=user_id,
        )
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user_id
