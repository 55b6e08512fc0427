"""
Audit Helper Utilities - one-line audit logging for endpoints.

Pull request context (IP, user-agent, request ID) from request.state so
route handlers only pass what happened.

Usage:
    from app.utils.audit_helpers import audit_admin_action

    background_tasks.add_task(
        audit_admin_action,
        request=request,
        admin_id=admin_id,
        action="admin_users_listed",
        metadata={"count": len(users)},
    )
"""

import asyncio
from typing import Any

from fastapi import Request

from app.infrastructure.audit.audit_logger import audit_logger

# Strong references to in-flight security audits until they finish
_pending_audits: set[asyncio.Task] = set()


def _request_context(request: Request) -> dict[str, str | None]:
    state = request.state
    return {
        "ip_address": getattr(state, "ip_address", None),
        "user_agent": getattr(state, "user_agent", None),
        "request_id": getattr(state, "request_id", None),
    }


async def audit_admin_action(
    request: Request,
    admin_id: str,
    action: str,
    resource_type: str | None = None,
    resource_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> bool:
    """
    Audit an action performed through the admin API.

    Returns:
        True if logged successfully
    """
    return await audit_logger.log(
        actor_id=admin_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        metadata=metadata,
        **_request_context(request),
    )


async def audit_user_action(
    request: Request,
    user_id: str | None,
    action: str,
    resource_type: str | None = None,
    resource_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> bool:
    """Audit an action a user performed on their own data."""
    return await audit_logger.log(
        actor_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        metadata=metadata,
        **_request_context(request),
    )


async def audit_security_event(
    request: Request,
    event_type: str,
    severity: str,
    description: str,
    user_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> bool:
    """
    One-line helper for security events (rate limiting, bad tokens, forbidden access).

    Examples:
        await audit_security_event(
            request=request,
            event_type="rate_limit_exceeded",
            severity="medium",
            description="IP exceeded rate limit on /admin/users",
            metadata={"limit": 60},
        )
    """
    return await audit_logger.log_security_event(
        actor_id=user_id,
        event_type=event_type,
        severity=severity,
        description=description,
        metadata=metadata,
        **_request_context(request),
    )


def dispatch_security_event(
    request: Request,
    event_type: str,
    severity: str,
    description: str,
    user_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> asyncio.Task:
    """
    Schedule audit_security_event without waiting for the audit write.

    For code paths that reject the request right after (429, 401, 403), so
    a slow audit database never delays the response.
    """
    task = asyncio.create_task(
        audit_security_event(
            request=request,
            event_type=event_type,
            severity=severity,
            description=description,
            user_id=user_id,
            metadata=metadata,
        )
    )
    _pending_audits.add(task)
    task.add_done_callback(_pending_audits.discard)
    return task
