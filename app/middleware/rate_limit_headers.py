"""
Rate Limit Headers Middleware - expose rate limit state to clients.

Headers added when a rate limit dependency ran for the request:
- X-RateLimit-Limit: maximum requests allowed in the window
- X-RateLimit-Remaining: remaining requests in the current window
- X-RateLimit-Reset: unix timestamp when the window resets
- Retry-After: seconds to wait (only when the request was denied)
"""

import time

from starlette.middleware.base import BaseHTTPMiddleware


class RateLimitHeadersMiddleware(BaseHTTPMiddleware):
    """Copy request.state.rate_limit_info onto the response headers."""

    async def dispatch(self, request, call_next):
        response = await call_next(request)

        rate_limit_info = getattr(request.state, "rate_limit_info", None)
        if not rate_limit_info:
            return response

        response.headers["X-RateLimit-Limit"] = str(rate_limit_info["limit"])
        response.headers["X-RateLimit-Remaining"] = str(rate_limit_info["remaining"])

        retry_after = rate_limit_info.get("retry_after")
        if retry_after is not None:
            response.headers["X-RateLimit-Reset"] = str(int(time.time()) + retry_after)
            if not rate_limit_info.get("allowed", True):
                response.headers["Retry-After"] = str(retry_after)

        return response
