"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable. By default the job runs once (cron style); pass --loop or set
WORKER_LOOP=1 to run its scheduler forever instead.

    python -m app.jobs.worker process_checkins
    python -m app.jobs.worker process_messages --loop
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from app.config import settings
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.jobs.checkin_job import run_checkin_job, start_checkin_scheduler
from app.jobs.message_delivery_job import run_message_delivery_job, start_message_delivery_scheduler
from app.jobs.token_cleanup_job import run_token_cleanup_job, start_token_cleanup_scheduler

logger = get_logger(__name__)

JobCoroutine = Callable[[], Awaitable[object]]

JOB_REGISTRY: dict[str, JobCoroutine] = {
    "process_checkins": run_checkin_job,
    "process_messages": run_message_delivery_job,
    "expire_tokens": run_token_cleanup_job,
}

SCHEDULER_REGISTRY: dict[str, JobCoroutine] = {
    "process_checkins": start_checkin_scheduler,
    "process_messages": start_message_delivery_scheduler,
    "expire_tokens": start_token_cleanup_scheduler,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    args = [arg for arg in sys.argv[1:] if not arg.startswith("--")]
    if args:
        return args[0].strip().lower()
    return os.getenv("WORKER_JOB", "process_checkins").strip().lower()


def _resolve_loop() -> bool:
    return "--loop" in sys.argv[1:] or os.getenv("WORKER_LOOP", "").strip().lower() in ("1", "true")


async def run_worker(job_name: str | None = None, loop: bool = False) -> None:
    """Run the requested background job with a database pool around it."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    logger.info("Starting background worker", job=name, loop=loop)
    await db_pool.initialize()
    try:
        registry = SCHEDULER_REGISTRY if loop else JOB_REGISTRY
        await registry[name]()
    finally:
        await db_pool.close()


def main() -> None:
    """CLI entrypoint."""
    setup_logging(settings.LOG_LEVEL)
    asyncio.run(run_worker(_resolve_job_name(), loop=_resolve_loop()))


if __name__ == "__main__":
    main()
