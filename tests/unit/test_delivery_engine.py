"""
Tests for the delivery trigger engine against in-memory stores.
"""

from datetime import timedelta

import pytest

from app.db.helpers import DatabaseError
from app.features.checkin.domain import CheckinState, CheckinStatus
from app.features.delivery.domain import DeliveryRule, MessageStatus
from app.features.delivery.services.delivery_engine import DeliveryEngine, is_eligible


@pytest.fixture
def engine(message_store, checkin_store, contacts, profiles, sender, audit):
    return DeliveryEngine(
        messages=message_store,
        contacts=contacts,
        profiles=profiles,
        checkins=checkin_store,
        sender=sender,
        audit=audit,
        max_send_attempts=3,
    )


def _failing_engine(fail_for, message_store, checkin_store, contacts, profiles, audit, sender_factory):
    sender = sender_factory(fail_for=fail_for)
    engine = DeliveryEngine(
        messages=message_store,
        contacts=contacts,
        profiles=profiles,
        checkins=checkin_store,
        sender=sender,
        audit=audit,
        max_send_attempts=3,
    )
    return engine, sender


def _absent(d0) -> CheckinState:
    return CheckinState(
        status=CheckinStatus.CONFIRMED_ABSENT, attempts=2, last_confirmed_at=d0, next_due_at=d0
    )


def test_is_eligible_date_rule(d0, make_message):
    message = make_message("m1", DeliveryRule(mode="date", deliver_at=d0), ["a@example.com"])

    assert is_eligible(message, d0 - timedelta(seconds=1)) is False
    assert is_eligible(message, d0) is True
    assert is_eligible(message, d0) is True


def test_is_eligible_checkin_rule_needs_absence(d0, make_message):
    message = make_message(
        "m1", DeliveryRule(mode="checkin", checkin_interval_days=30), ["a@example.com"]
    )

    assert is_eligible(message, d0, CheckinStatus.PENDING) is False
    assert is_eligible(message, d0, None) is False
    assert is_eligible(message, d0, CheckinStatus.CONFIRMED_ABSENT) is True


def test_is_eligible_only_for_scheduled(d0, make_message):
    rule = DeliveryRule(mode="date", deliver_at=d0)

    assert not is_eligible(make_message("m1", rule, ["a@x.io"], status=MessageStatus.DRAFT), d0)
    assert not is_eligible(make_message("m2", rule, ["a@x.io"], status=MessageStatus.DELIVERED), d0)


@pytest.mark.asyncio
async def test_date_message_delivered_to_every_recipient(d0, engine, message_store, sender, audit, make_message):
    message_store.add(
        make_message(
            "m1",
            DeliveryRule(mode="date", deliver_at=d0),
            ["a@example.com", "b@example.com"],
        )
    )

    report = await engine.deliver_due_date_messages(d0 + timedelta(minutes=1))

    assert report.delivered == 1
    assert sorted(sender.deliveries) == [("a@example.com", "m1"), ("b@example.com", "m1")]
    assert message_store.messages["m1"].status is MessageStatus.DELIVERED
    assert [e["action"] for e in audit.events] == ["message_delivered"]


@pytest.mark.asyncio
async def test_future_date_message_not_delivered(d0, engine, message_store, sender, make_message):
    message_store.add(
        make_message("m1", DeliveryRule(mode="date", deliver_at=d0 + timedelta(days=1)), ["a@x.io"])
    )

    report = await engine.deliver_due_date_messages(d0)

    assert report.considered == 0
    assert sender.deliveries == []
    assert message_store.messages["m1"].status is MessageStatus.SCHEDULED


@pytest.mark.asyncio
async def test_second_run_does_not_redeliver(d0, engine, message_store, sender, make_message):
    message_store.add(make_message("m1", DeliveryRule(mode="date", deliver_at=d0), ["a@x.io"]))

    await engine.deliver_due_date_messages(d0)
    report = await engine.deliver_due_date_messages(d0 + timedelta(hours=1))

    assert report.delivered == 0
    assert len(sender.deliveries) == 1


@pytest.mark.asyncio
async def test_lost_race_counts_already_delivered(d0, engine, message_store, make_message):
    message = message_store.add(
        make_message("m1", DeliveryRule(mode="date", deliver_at=d0), ["a@x.io"])
    )

    async def concurrent_mark(message_id):
        message.status = MessageStatus.DELIVERED
        return False

    message_store.mark_delivered = concurrent_mark

    report = await engine.deliver_due_date_messages(d0)

    assert report.delivered == 0
    assert report.already_delivered == 1


@pytest.mark.asyncio
async def test_send_failure_leaves_message_scheduled(
    d0, message_store, checkin_store, contacts, profiles, audit, make_message, sender_factory
):
    engine, sender = _failing_engine(
        {"b@example.com"}, message_store, checkin_store, contacts, profiles, audit, sender_factory
    )
    message = message_store.add(
        make_message(
            "m1",
            DeliveryRule(mode="date", deliver_at=d0),
            ["a@example.com", "b@example.com"],
        )
    )

    report = await engine.deliver_due_date_messages(d0)

    assert report.send_failures == 1
    assert report.delivered == 0
    assert message_store.mark_delivered_calls == []
    assert message.status is MessageStatus.SCHEDULED
    assert audit.events == []
    assert message.recipients[0].delivered_at is not None
    assert message.recipients[1].send_attempts == 1


@pytest.mark.asyncio
async def test_retry_only_resends_failed_recipients_until_given_up(
    d0, message_store, checkin_store, contacts, profiles, audit, make_message, sender_factory
):
    engine, sender = _failing_engine(
        {"b@example.com"}, message_store, checkin_store, contacts, profiles, audit, sender_factory
    )
    message = message_store.add(
        make_message(
            "m1",
            DeliveryRule(mode="date", deliver_at=d0),
            ["a@example.com", "b@example.com"],
        )
    )

    reports = [
        await engine.deliver_due_date_messages(d0 + timedelta(minutes=15 * run)) for run in range(5)
    ]

    assert sender.deliveries == [("a@example.com", "m1")]
    assert message.recipients[1].send_attempts == 3
    assert [r.send_failures for r in reports] == [1, 1, 0, 0, 0]
    assert [r.delivered for r in reports] == [0, 0, 1, 0, 0]
    assert message.status is MessageStatus.DELIVERED
    assert audit.events[0]["metadata"]["abandoned_recipients"] == 1


@pytest.mark.asyncio
async def test_recovered_recipient_delivers_message(
    d0, message_store, checkin_store, contacts, profiles, audit, make_message, sender_factory
):
    engine, sender = _failing_engine(
        {"b@example.com"}, message_store, checkin_store, contacts, profiles, audit, sender_factory
    )
    message = message_store.add(
        make_message(
            "m1",
            DeliveryRule(mode="date", deliver_at=d0),
            ["a@example.com", "b@example.com"],
        )
    )

    await engine.deliver_due_date_messages(d0)
    sender.fail_for.clear()
    report = await engine.deliver_due_date_messages(d0 + timedelta(minutes=15))

    assert report.delivered == 1
    assert sender.deliveries == [("a@example.com", "m1"), ("b@example.com", "m1")]
    assert message.status is MessageStatus.DELIVERED
    assert audit.events[0]["metadata"]["abandoned_recipients"] == 0


@pytest.mark.asyncio
async def test_storage_error_is_counted(d0, engine, message_store, make_message):
    message_store.add(make_message("m1", DeliveryRule(mode="date", deliver_at=d0), ["a@x.io"]))

    async def broken_mark(message_id):
        raise DatabaseError("connection lost", "mark_delivered")

    message_store.mark_delivered = broken_mark

    report = await engine.deliver_due_date_messages(d0)

    assert report.storage_errors == 1
    assert report.delivered == 0


@pytest.mark.asyncio
async def test_message_without_recipients_skipped(d0, engine, message_store, sender, make_message):
    message_store.add(make_message("m1", DeliveryRule(mode="date", deliver_at=d0), []))

    report = await engine.deliver_due_date_messages(d0)

    assert report.skipped == 1
    assert sender.deliveries == []


@pytest.mark.asyncio
async def test_release_checkin_messages_notifies_contacts(
    d0, engine, message_store, checkin_store, sender, make_message
):
    checkin_store.rows["user-123"] = _absent(d0)
    rule = DeliveryRule(mode="checkin", checkin_interval_days=30, attempts_limit=2)
    message_store.add(make_message("m1", rule, ["a@example.com"]))
    message_store.add(make_message("m2", DeliveryRule(mode="date", deliver_at=d0), ["b@example.com"]))

    report = await engine.release_checkin_messages("user-123", d0)

    assert report.delivered == 1
    assert report.trusted_contacts_notified == 2
    assert sender.deliveries == [("a@example.com", "m1")]
    assert sorted(sender.alerts) == ["ana@example.com", "luis@example.com"]
    assert message_store.messages["m2"].status is MessageStatus.SCHEDULED
    assert checkin_store.notified["user-123"] == d0


@pytest.mark.asyncio
async def test_repeated_release_does_not_realert_contacts(
    d0, engine, message_store, checkin_store, sender, make_message
):
    checkin_store.rows["user-123"] = _absent(d0)
    rule = DeliveryRule(mode="checkin", checkin_interval_days=30, attempts_limit=2)
    message_store.add(make_message("m1", rule, ["a@example.com"]))

    await engine.release_checkin_messages("user-123", d0)
    report = await engine.release_checkin_messages("user-123", d0 + timedelta(minutes=15))

    assert report.delivered == 0
    assert report.trusted_contacts_notified == 0
    assert len(sender.alerts) == 2
    assert len(sender.deliveries) == 1


@pytest.mark.asyncio
async def test_failed_contact_alert_retried_until_given_up(
    d0, message_store, checkin_store, contacts, profiles, audit, sender_factory
):
    engine, sender = _failing_engine(
        {"luis@example.com"}, message_store, checkin_store, contacts, profiles, audit, sender_factory
    )
    checkin_store.rows["user-123"] = _absent(d0)

    await engine.release_checkin_messages("user-123", d0)
    assert "user-123" not in checkin_store.notified
    assert await message_store.list_absent_owners_pending_release() == ["user-123"]

    await engine.release_checkin_messages("user-123", d0 + timedelta(minutes=15))
    await engine.release_checkin_messages("user-123", d0 + timedelta(minutes=30))

    assert checkin_store.alert_attempts["user-123"] == 3
    assert checkin_store.notified["user-123"] == d0 + timedelta(minutes=30)
    assert await message_store.list_absent_owners_pending_release() == []


@pytest.mark.asyncio
async def test_release_reads_current_checkin_status(
    d0, engine, message_store, checkin_store, sender, make_message
):
    checkin_store.rows["user-123"] = CheckinState(
        status=CheckinStatus.ACTIVE, last_confirmed_at=d0, next_due_at=d0 + timedelta(days=30)
    )
    rule = DeliveryRule(mode="checkin", checkin_interval_days=30, attempts_limit=2)
    message_store.add(make_message("m1", rule, ["a@example.com"]))

    report = await engine.release_checkin_messages("user-123", d0)

    assert report.considered == 0
    assert sender.deliveries == []
    assert sender.alerts == []
    assert message_store.messages["m1"].status is MessageStatus.SCHEDULED


@pytest.mark.asyncio
async def test_release_without_checkin_row_is_noop(d0, engine, sender):
    report = await engine.release_checkin_messages("user-123", d0)

    assert report.considered == 0
    assert sender.alerts == []
