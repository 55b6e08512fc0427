"""
Audit logging infrastructure.

Best-effort audit trail for admin actions and the check-in / delivery
lifecycle. Failures are logged and swallowed.
"""

from app.infrastructure.audit.audit_logger import AuditLogger, audit_logger

__all__ = ["AuditLogger", "audit_logger"]
