"""
Message delivery pass.

1. Date-mode messages whose deliver_at has passed.
2. Retry sweep: owners already presumed absent whose release is
   unfinished, because a check-in message is still scheduled or their
   trusted contacts were not alerted yet. The engine skips what already
   went out.
"""

import asyncio
from datetime import UTC, datetime

from app.features.delivery.repository.message_repository import MessageRepository
from app.features.delivery.services.delivery_engine import delivery_engine
from app.infrastructure.observability.logging import get_logger, log_job_run
from app.jobs.metrics import JobMetrics

logger = get_logger(__name__)

JOB_NAME = "process_messages"
JOB_INTERVAL_MINUTES = 15
METRIC_FIELDS = ("considered", "delivered", "send_failures", "error_count")


class MessageDeliveryJob:
    def __init__(self, engine=None, messages=MessageRepository):
        self.engine = engine or delivery_engine
        self.messages = messages
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.job_metrics = JobMetrics(JOB_NAME, fields=METRIC_FIELDS)

    async def run_once(self, now: datetime | None = None) -> dict:
        if self.is_running:
            logger.warning("Message delivery job already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        now = now or datetime.now(UTC)
        try:
            self.is_running = True
            self.job_metrics.reset()

            date_report = await self.engine.deliver_due_date_messages(now)
            self.job_metrics.add(date_report.to_dict())

            for user_id in await self.messages.list_absent_owners_pending_release():
                try:
                    report = await self.engine.release_checkin_messages(user_id, now)
                    self.job_metrics.add(report.to_dict())
                    self.job_metrics.incr("absent_owners_retried")
                except Exception as e:
                    logger.error(
                        "Check-in delivery retry failed",
                        user_id=user_id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    self.job_metrics.record_error(user_id, e)

            self.job_metrics.finalize()
            self.last_run_time = now
            metrics = self.job_metrics.to_dict()
            log_job_run(JOB_NAME, metrics)
            return metrics

        finally:
            self.is_running = False


message_delivery_job = MessageDeliveryJob()


async def run_message_delivery_job() -> dict:
    """Run a single delivery pass."""
    return await message_delivery_job.run_once()


async def start_message_delivery_scheduler():
    logger.info("Starting message delivery scheduler", interval_minutes=JOB_INTERVAL_MINUTES)

    while True:
        try:
            await run_message_delivery_job()
            await asyncio.sleep(JOB_INTERVAL_MINUTES * 60)
        except Exception as e:
            logger.error(
                "Error in message delivery scheduler", error=str(e), error_type=type(e).__name__
            )
            await asyncio.sleep(60)
