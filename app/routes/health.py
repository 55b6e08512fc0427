# app/routes/health.py
"""
Liveness and readiness endpoints.
"""

import time

from fastapi import APIRouter

from app.config import settings
from app.db.pool import db_health_check

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "carry-my-words"}


@router.get("/readyz")
async def readyz():
    """
    Readiness check: database pool plus required configuration.
    """
    checks = {}

    t0 = time.time()
    db_health = await db_health_check()
    db_ok = bool(db_health.get("healthy", False))
    checks["database"] = {
        "ok": db_ok,
        "latency_ms": round((time.time() - t0) * 1000, 1),
    }
    if "pool_stats" in db_health:
        checks["database"].update(db_health["pool_stats"])
    if not db_ok:
        checks["database"]["error"] = db_health.get("error", "Database unhealthy")

    config_issues = []
    if not settings.RESEND_API_KEY:
        config_issues.append("RESEND_API_KEY not set")
    if settings.is_production() and not settings.CRON_SECRET:
        config_issues.append("CRON_SECRET not set")

    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
    }

    overall_ok = db_ok and not config_issues
    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}


@router.get("/health/database")
async def database_health():
    """Detailed database pool health information."""
    return await db_health_check()
