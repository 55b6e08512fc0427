"""
Check-in sweep.

Walks check-ins whose next_due_at has passed and applies one due check to
each: pending users get a reminder with a fresh confirmation link, users
reaching the attempts limit have their check-in messages released and
their trusted contacts told.
"""

import asyncio
from datetime import UTC, datetime

from app.features.checkin.repository.checkin_repository import CheckinRepository
from app.features.checkin.services.checkin_service import checkin_service
from app.infrastructure.observability.logging import get_logger, log_job_run
from app.jobs.metrics import JobMetrics

logger = get_logger(__name__)

JOB_NAME = "process_checkins"
JOB_INTERVAL_MINUTES = 60
BATCH_LIMIT = 500
METRIC_FIELDS = ("processed", "unchanged", "lost_race", "reminded", "absent", "error_count")


class CheckinSweepJob:
    def __init__(self, service=None, checkins=CheckinRepository):
        self.service = service or checkin_service
        self.checkins = checkins
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.job_metrics = JobMetrics(JOB_NAME, fields=METRIC_FIELDS)

    async def run_once(self, now: datetime | None = None) -> dict:
        if self.is_running:
            logger.warning("Check-in sweep already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        now = now or datetime.now(UTC)
        try:
            self.is_running = True
            self.job_metrics.reset()

            due = await self.checkins.list_due(now, limit=BATCH_LIMIT)

            for checkin in due:
                self.job_metrics.incr("processed")
                try:
                    outcome = await self.service.advance(checkin, now)
                    self.job_metrics.incr(outcome.value)
                except Exception as e:
                    logger.error(
                        "Check-in sweep failed for user",
                        user_id=checkin.user_id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    self.job_metrics.record_error(checkin.user_id, e)

            self.job_metrics.finalize()
            self.last_run_time = now
            metrics = self.job_metrics.to_dict()
            log_job_run(JOB_NAME, metrics)
            return metrics

        finally:
            self.is_running = False

    def get_job_status(self) -> dict:
        return {
            "job_name": JOB_NAME,
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "interval_minutes": JOB_INTERVAL_MINUTES,
        }


checkin_sweep_job = CheckinSweepJob()


async def run_checkin_job() -> dict:
    """Run a single check-in sweep."""
    return await checkin_sweep_job.run_once()


async def start_checkin_scheduler():
    logger.info("Starting check-in scheduler", interval_minutes=JOB_INTERVAL_MINUTES)

    while True:
        try:
            await run_checkin_job()
            await asyncio.sleep(JOB_INTERVAL_MINUTES * 60)
        except Exception as e:
            logger.error("Error in check-in scheduler", error=str(e), error_type=type(e).__name__)
            await asyncio.sleep(60)
