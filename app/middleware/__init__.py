"""
Middleware components for request processing.

This package contains:
- Request context (request ID, IP address, user agent)
- In-process rate limiting for the admin API and confirmation links
- Rate limit response headers
"""

from app.middleware.rate_limit_dependencies import rate_limit_admin, rate_limit_checkin_link
from app.middleware.rate_limit_headers import RateLimitHeadersMiddleware
from app.middleware.rate_limiter import RateLimiter, RateLimitExceeded, rate_limiter
from app.middleware.request_context import RequestContextMiddleware

__all__ = [
    "RequestContextMiddleware",
    "RateLimitHeadersMiddleware",
    "RateLimiter",
    "RateLimitExceeded",
    "rate_limiter",
    "rate_limit_admin",
    "rate_limit_checkin_link",
]
