"""
Rate Limit Dependencies - per-IP admission control for endpoints.

Usage:
    from app.middleware.rate_limit_dependencies import rate_limit_admin

    @router.get("/admin/users")
    async def list_users(
        request: Request,
        _rate: None = Depends(rate_limit_admin),
        admin_id: str = Depends(require_admin),
    ):
        ...

Denied callers get a 429 with Retry-After; the rate limit info is left on
request.state for RateLimitHeadersMiddleware.
"""

from fastapi import HTTPException, Request, status

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.middleware.rate_limiter import RateLimitExceeded, rate_limiter
from app.utils.audit_helpers import dispatch_security_event

logger = get_logger(__name__)


def _client_key(request: Request, scope: str) -> str | None:
    ip_address = getattr(request.state, "ip_address", None)
    if not ip_address and request.client:
        ip_address = request.client.host
    if not ip_address:
        return None
    return f"{scope}:ip:{ip_address}"


async def _enforce(request: Request, scope: str, limit: int | None) -> None:
    if not settings.RATE_LIMIT_ENABLED:
        return

    key = _client_key(request, scope)
    if key is None:
        logger.warning("Rate limit check skipped - no client IP", path=request.url.path)
        return

    allowed, info = rate_limiter.check_rate_limit(key, limit=limit)
    request.state.rate_limit_info = info

    if allowed:
        return

    error = RateLimitExceeded(key, info["limit"], info["retry_after"])
    logger.warning(
        "IP rate limit exceeded",
        key=error.key,
        limit=error.limit,
        retry_after=error.retry_after,
        path=request.url.path,
    )

    dispatch_security_event(
        request=request,
        event_type="rate_limit_exceeded",
        severity="medium",
        description=f"IP exceeded rate limit on {request.url.path}",
        metadata={
            "limit": error.limit,
            "retry_after": error.retry_after,
            "endpoint": request.url.path,
        },
    )

    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail={
            "error": "rate_limit_exceeded",
            "message": f"Too many requests. Try again in {error.retry_after} seconds.",
            "limit": error.limit,
            "retry_after": error.retry_after,
        },
        headers={"Retry-After": str(error.retry_after)},
    ) from error


async def rate_limit_admin(request: Request) -> None:
    """Per-IP limit for the admin API (60 requests per 60 second window by default)."""
    await _enforce(request, "admin", settings.get_rate_limits()["admin_per_window"])


async def rate_limit_checkin_link(request: Request) -> None:
    """Per-IP limit for the unauthenticated one-time confirmation endpoint."""
    await _enforce(request, "checkin_link", settings.get_rate_limits()["checkin_link_per_window"])
