"""
RequestContext Middleware - request tracking for every request.

Sets on request.state:
- request_id: unique ID for tracing (echoed as X-Request-ID)
- ip_address: client IP (rate limit key, audit context)
- user_agent: client user agent string

Request.state namespace convention:
- request_id, ip_address, user_agent: set here
- rate_limit_info: set by rate limit dependencies
"""

import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import settings
from app.infrastructure.observability.logging import (
    bind_request_context,
    clear_request_context,
    get_logger,
)

logger = get_logger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Attach request id, client IP and user agent to request.state."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        request.state.ip_address = extract_client_ip(request)
        request.state.user_agent = request.headers.get("user-agent")

        bind_request_context(request_id=request_id, path=request.url.path)
        logger.debug(
            "Request started", method=request.method, ip_address=request.state.ip_address
        )

        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Request-ID"] = request_id
        return response


def extract_client_ip(request: Request) -> str | None:
    """
    Extract client IP address with proxy spoofing protection.

    X-Forwarded-For is only trusted when TRUST_X_FORWARDED_FOR is enabled
    and the direct peer is a configured proxy; otherwise a caller could
    rotate the header to dodge per-IP rate limits.
    """
    direct_ip = request.client.host if request.client else None

    if not settings.TRUST_X_FORWARDED_FOR:
        return direct_ip

    if direct_ip and direct_ip in settings.TRUSTED_PROXY_IPS:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            # "client, proxy1, proxy2": first entry is the original client
            return forwarded_for.split(",")[0].strip()

    return direct_ip
