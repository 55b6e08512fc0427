"""
AuditLogger - best-effort audit trail for admin and lifecycle actions.

Records who did what:
- Admin actions (user listing, check-in resets)
- Check-in lifecycle (confirmations, reminders, presumed absence)
- Deliveries and trusted contact notifications
- Security events (rate limit exceeded, bad confirmation tokens)

Usage:
    from app.infrastructure.audit import audit_logger

    await audit_logger.log(
        actor_id=admin_id,
        action="admin_checkin_reset",
        resource_type="checkin",
        resource_id=user_id,
        metadata={"previous_status": "confirmed_absent"},
        ip_address=request.state.ip_address,
    )

Design Principles:
- Structured log first (always), database row second
- A failing audit write never aborts the primary operation: log() never raises
- actor_id is None for system actions (cron jobs, anonymous callers)
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from psycopg.types.json import Jsonb

from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class AuditLogger:
    """
    Audit log collaborator.

    Writes to:
    1. Structured logs (stdout) - real-time monitoring
    2. Database (audit_logs table) - queryable trail
    """

    @staticmethod
    async def log(
        actor_id: str | UUID | None,
        action: str,
        metadata: dict[str, Any] | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        request_id: str | None = None,
    ) -> bool:
        """
        Log an audit event to structured logs and the audit_logs table.

        Args:
            actor_id: User or admin who performed the action (None for system)
            action: Action name (e.g., "checkin_confirmed", "admin_checkin_reset")
            metadata: Additional JSON-serializable context
            resource_type: Type of resource touched (e.g., "checkin", "message")
            resource_id: Specific resource ID
            ip_address: Client IP address
            user_agent: Client user agent string
            request_id: Request correlation ID

        Returns:
            True if persisted, False if the database write failed (never raises)
        """
        if isinstance(actor_id, UUID):
            actor_id = str(actor_id)

        timestamp = datetime.now(UTC)

        logger.info(
            "Audit event",
            audit_action=action,
            actor_id=actor_id,
            resource_type=resource_type,
            resource_id=resource_id,
            ip_address=ip_address,
            request_id=request_id,
        )

        try:
            async with db_pool.connection() as conn:
                await conn.execute(
                    """
                    INSERT INTO audit_logs (
                        actor_id, action, resource_type, resource_id,
                        metadata, ip_address, user_agent, request_id, created_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        actor_id,
                        action,
                        resource_type,
                        resource_id,
                        Jsonb(metadata or {}),
                        ip_address,
                        user_agent,
                        request_id,
                        timestamp,
                    ),
                )

            return True

        except Exception as e:
            # Include enough context to recreate the row by hand
            logger.error(
                "Failed to write audit log to database",
                error=str(e),
                error_type=type(e).__name__,
                fallback_data={
                    "actor_id": actor_id,
                    "action": action,
                    "resource_type": resource_type,
                    "resource_id": resource_id,
                    "metadata": metadata,
                    "ip_address": ip_address,
                    "request_id": request_id,
                    "timestamp": timestamp.isoformat(),
                },
            )
            return False

    @staticmethod
    async def log_security_event(
        actor_id: str | UUID | None,
        event_type: str,
        severity: str,
        description: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
        request_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """
        Log security events (rate limit exceeded, invalid tokens, forbidden access).

        Args:
            actor_id: User involved (None if unauthenticated)
            event_type: Type of security event (e.g., "rate_limit_exceeded")
            severity: Severity level ("low", "medium", "high", "critical")
            description: Human-readable description
        """
        audit_metadata = dict(metadata or {})
        audit_metadata.update(
            {
                "event_type": event_type,
                "severity": severity,
                "description": description,
            }
        )

        return await AuditLogger.log(
            actor_id=actor_id,
            action="security_event",
            resource_type="security",
            metadata=audit_metadata,
            ip_address=ip_address,
            user_agent=user_agent,
            request_id=request_id,
        )


# Global singleton instance
audit_logger = AuditLogger()
