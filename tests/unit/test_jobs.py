from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from app.features.delivery.domain import DeliveryRule, MessageStatus
from app.features.delivery.services.delivery_engine import DeliveryEngine, DeliveryReport
from app.jobs.message_delivery_job import MessageDeliveryJob
from app.jobs.token_cleanup_job import run_token_cleanup_job


@pytest.mark.asyncio
async def test_delivery_job_runs_date_pass(d0, message_store, contacts, profiles, sender, audit, make_message):
    engine = DeliveryEngine(
        messages=message_store, contacts=contacts, profiles=profiles, sender=sender, audit=audit
    )
    message_store.add(make_message("m1", DeliveryRule(mode="date", deliver_at=d0), ["a@x.io"]))
    job = MessageDeliveryJob(engine=engine, messages=message_store)

    metrics = await job.run_once(d0 + timedelta(minutes=5))

    assert metrics["job_run"] == "process_messages"
    assert metrics["delivered"] == 1
    assert message_store.messages["m1"].status is MessageStatus.DELIVERED
    assert job.is_running is False


@pytest.mark.asyncio
async def test_delivery_job_retries_absent_owners(d0):
    engine = AsyncMock()
    engine.deliver_due_date_messages.return_value = DeliveryReport()
    engine.release_checkin_messages.return_value = DeliveryReport(
        considered=1, delivered=1, trusted_contacts_notified=2
    )
    messages = AsyncMock()
    messages.list_absent_owners_pending_release.return_value = ["user-9"]

    metrics = await MessageDeliveryJob(engine=engine, messages=messages).run_once(d0)

    engine.release_checkin_messages.assert_awaited_once_with("user-9", d0)
    assert metrics["absent_owners_retried"] == 1
    assert metrics["delivered"] == 1
    assert metrics["trusted_contacts_notified"] == 2


@pytest.mark.asyncio
async def test_delivery_job_skips_overlapping_run(d0):
    job = MessageDeliveryJob(engine=AsyncMock(), messages=AsyncMock())
    job.is_running = True

    assert await job.run_once(d0) == {"skipped": True, "reason": "already_running"}


@pytest.mark.asyncio
async def test_token_cleanup_reports_expired(d0):
    tokens = AsyncMock()
    tokens.expire_stale.return_value = 4

    metrics = await run_token_cleanup_job(d0, tokens=tokens)

    tokens.expire_stale.assert_awaited_once_with(d0)
    assert metrics["expired"] == 4
