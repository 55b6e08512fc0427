"""
Retire check-in confirmation tokens that expired unused.
"""

import asyncio
from datetime import UTC, datetime

from app.features.checkin.repository.token_repository import VerificationTokenRepository
from app.infrastructure.observability.logging import get_logger, log_job_run
from app.jobs.metrics import JobMetrics

logger = get_logger(__name__)

JOB_NAME = "expire_tokens"
JOB_INTERVAL_HOURS = 6


async def run_token_cleanup_job(
    now: datetime | None = None, tokens=VerificationTokenRepository
) -> dict:
    metrics = JobMetrics(JOB_NAME, fields=("expired",))
    metrics.incr("expired", await tokens.expire_stale(now or datetime.now(UTC)))
    metrics.finalize()

    result = metrics.to_dict()
    log_job_run(JOB_NAME, result)
    return result


async def start_token_cleanup_scheduler():
    logger.info("Starting token cleanup scheduler", interval_hours=JOB_INTERVAL_HOURS)

    while True:
        try:
            await run_token_cleanup_job()
            await asyncio.sleep(JOB_INTERVAL_HOURS * 3600)
        except Exception as e:
            logger.error("Error in token cleanup scheduler", error=str(e), error_type=type(e).__name__)
            await asyncio.sleep(300)
