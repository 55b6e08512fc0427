from datetime import UTC, datetime

import pytest

from app.auth.verify import auth_dependency
from app.features.checkin.domain import Checkin, CheckinState, CheckinStatus
from app.features.delivery.domain import (
    DeliveryMode,
    DeliveryRule,
    Message,
    MessageStatus,
    MessageType,
    Recipient,
    TrustedContact,
)


@pytest.fixture
def auth_override():
    def _override():
        return {"sub": "user-123", "email": "owner@example.com"}

    return _override


@pytest.fixture
def apply_auth_override(auth_override):
    def _apply(app):
        app.dependency_overrides[auth_dependency] = auth_override

    return _apply


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def d0():
    return datetime(2025, 1, 1, 9, 0, tzinfo=UTC)


def _with_ids(message_id: str, recipients) -> list[Recipient]:
    numbered = []
    for i, recipient in enumerate(recipients, start=1):
        recipient.id = recipient.id or f"{message_id}-r{i}"
        recipient.message_id = message_id
        numbered.append(recipient)
    return numbered


class FakeMessageStore:
    """In-memory stand-in for MessageRepository, including the status CAS."""

    def __init__(self):
        self.messages: dict[str, Message] = {}
        self.mark_delivered_calls: list[str] = []
        self.checkins: "FakeCheckinStore | None" = None

    def add(self, message: Message) -> Message:
        self.messages[message.id] = message
        return message

    async def list_due_date_messages(self, now, limit: int = 500):
        return [
            m
            for m in self.messages.values()
            if m.status is MessageStatus.SCHEDULED
            and m.rule is not None
            and m.rule.mode is DeliveryMode.DATE
            and m.rule.deliver_at <= now
        ]

    async def list_scheduled_checkin_messages(self, owner_id: str):
        return [
            m
            for m in self.messages.values()
            if m.owner_id == owner_id
            and m.status is MessageStatus.SCHEDULED
            and m.rule is not None
            and m.rule.mode is DeliveryMode.CHECKIN
        ]

    async def list_checkin_rules(self, owner_id: str):
        return [m.rule for m in await self.list_scheduled_checkin_messages(owner_id)]

    async def mark_delivered(self, message_id: str) -> bool:
        self.mark_delivered_calls.append(message_id)
        message = self.messages[message_id]
        if message.status is not MessageStatus.SCHEDULED:
            return False
        message.status = MessageStatus.DELIVERED
        return True

    def _recipient(self, recipient_id: str) -> Recipient:
        for message in self.messages.values():
            for recipient in message.recipients:
                if recipient.id == recipient_id:
                    return recipient
        raise KeyError(recipient_id)

    async def mark_recipient_sent(self, recipient_id: str) -> bool:
        recipient = self._recipient(recipient_id)
        if recipient.delivered_at is not None:
            return False
        recipient.delivered_at = datetime.now(UTC)
        return True

    async def record_recipient_failure(self, recipient_id: str) -> int:
        recipient = self._recipient(recipient_id)
        recipient.send_attempts += 1
        return recipient.send_attempts

    async def list_absent_owners_pending_release(self, limit: int = 200):
        if self.checkins is None:
            return []
        owners = []
        for user_id, state in self.checkins.rows.items():
            if state.status is not CheckinStatus.CONFIRMED_ABSENT:
                continue
            if user_id not in self.checkins.notified or await self.list_scheduled_checkin_messages(
                user_id
            ):
                owners.append(user_id)
        return owners[:limit]

    async def create_message(
        self, owner_id, message_type, status, rule, recipients, text_content=None, media_path=None
    ):
        message_id = f"msg-{len(self.messages) + 1}"
        message = Message(
            id=message_id,
            owner_id=owner_id,
            type=message_type,
            status=status,
            text_content=text_content,
            media_path=media_path,
            rule=rule,
            recipients=_with_ids(message_id, recipients),
        )
        return self.add(message)

    async def update_message(
        self, message_id, owner_id, message_type, rule, recipients, text_content=None, media_path=None
    ) -> bool:
        message = await self.get_for_owner(message_id, owner_id)
        if message is None or message.status is MessageStatus.DELIVERED:
            return False
        message.type = message_type
        message.rule = rule
        message.text_content = text_content
        message.media_path = media_path
        message.recipients = _with_ids(message_id, recipients)
        return True

    async def delete_for_owner(self, message_id: str, owner_id: str):
        message = await self.get_for_owner(message_id, owner_id)
        if message is None:
            return None
        if message.status is not MessageStatus.DELIVERED:
            del self.messages[message_id]
        return message.status

    async def count_active(self, owner_id: str) -> int:
        return sum(
            1
            for m in self.messages.values()
            if m.owner_id == owner_id and m.status is not MessageStatus.DELIVERED
        )

    async def list_for_owner(self, owner_id: str):
        return [m for m in self.messages.values() if m.owner_id == owner_id]

    async def get_for_owner(self, message_id: str, owner_id: str):
        message = self.messages.get(message_id)
        return message if message and message.owner_id == owner_id else None

    async def mark_scheduled(self, message_id: str, owner_id: str) -> bool:
        message = await self.get_for_owner(message_id, owner_id)
        if message is None or message.status is not MessageStatus.DRAFT:
            return False
        message.status = MessageStatus.SCHEDULED
        return True


class FakeContactStore:
    def __init__(self, contacts: list[TrustedContact] | None = None):
        self.contacts = contacts or []

    async def list_for_user(self, user_id: str):
        return [c for c in self.contacts if c.user_id == user_id]

    async def count_for_user(self, user_id: str) -> int:
        return len(await self.list_for_user(user_id))

    async def create(self, user_id: str, name: str, email: str):
        contact = TrustedContact(
            id=f"tc-{len(self.contacts) + 1}", user_id=user_id, name=name, email=email.lower()
        )
        self.contacts.append(contact)
        return contact

    async def delete(self, contact_id: str, user_id: str) -> bool:
        before = len(self.contacts)
        self.contacts = [
            c for c in self.contacts if not (c.id == contact_id and c.user_id == user_id)
        ]
        return len(self.contacts) < before


class FakeProfileStore:
    def __init__(self, profiles: dict[str, dict] | None = None):
        self.profiles = profiles or {}

    async def get(self, user_id: str):
        return self.profiles.get(user_id)

    async def get_email(self, user_id: str):
        profile = self.profiles.get(user_id)
        return profile.get("email") if profile else None

    async def get_plan(self, user_id: str):
        profile = self.profiles.get(user_id)
        return (profile or {}).get("plan", "free")


class FakeCheckinStore:
    """In-memory stand-in for CheckinRepository with a real compare-and-set."""

    def __init__(self, messages: FakeMessageStore | None = None):
        self.rows: dict[str, CheckinState] = {}
        self.notified: dict[str, datetime] = {}
        self.alert_attempts: dict[str, int] = {}
        self.messages = messages

    def _checkin(self, user_id: str) -> Checkin:
        return Checkin(
            user_id=user_id,
            state=self.rows[user_id],
            contacts_notified_at=self.notified.get(user_id),
            contact_alert_attempts=self.alert_attempts.get(user_id, 0),
        )

    async def get(self, user_id: str):
        return self._checkin(user_id) if user_id in self.rows else None

    async def create_if_missing(self, user_id: str, state: CheckinState):
        self.rows.setdefault(user_id, state)
        return self._checkin(user_id)

    async def save(self, user_id: str, state: CheckinState):
        self.rows[user_id] = state
        self.notified.pop(user_id, None)
        self.alert_attempts.pop(user_id, None)
        return self._checkin(user_id)

    async def compare_and_set(self, user_id: str, expected: CheckinState, new: CheckinState):
        if self.rows.get(user_id) != expected:
            return False
        self.rows[user_id] = new
        return True

    async def list_due(self, now, limit: int = 500):
        due = []
        for user_id, state in self.rows.items():
            if not state.is_due(now):
                continue
            if self.messages is not None and not await self.messages.list_scheduled_checkin_messages(
                user_id
            ):
                continue
            due.append(self._checkin(user_id))
        return due[:limit]

    async def mark_contacts_notified(self, user_id: str, now) -> bool:
        state = self.rows.get(user_id)
        if state is None or state.status is not CheckinStatus.CONFIRMED_ABSENT:
            return False
        if user_id in self.notified:
            return False
        self.notified[user_id] = now
        return True

    async def record_contact_alert_failure(self, user_id: str) -> int:
        self.alert_attempts[user_id] = self.alert_attempts.get(user_id, 0) + 1
        return self.alert_attempts[user_id]


class FakeTokenStore:
    def __init__(self):
        self.tokens: dict[str, dict] = {}

    async def create(self, user_id: str, token_hash: str, expires_at, action: str = "checkin_confirm"):
        token_id = f"tok-{len(self.tokens) + 1}"
        self.tokens[token_hash] = {
            "id": token_id,
            "user_id": user_id,
            "expires_at": expires_at,
            "used_at": None,
        }
        return token_id

    async def claim(self, token_hash: str, now, action: str = "checkin_confirm"):
        row = self.tokens.get(token_hash)
        if row is None or row["used_at"] is not None or row["expires_at"] <= now:
            return None
        row["used_at"] = now
        return row["user_id"]


class RecordingSender:
    """Email sender double that records every send."""

    def __init__(self, fail_for: set[str] | None = None):
        self.fail_for = fail_for or set()
        self.deliveries: list[tuple[str, str]] = []
        self.reminders: list[dict] = []
        self.alerts: list[str] = []

    async def send_message_delivery(self, recipient_email, message, sender_label=None):
        if recipient_email in self.fail_for:
            return False
        self.deliveries.append((recipient_email, message.id))
        return True

    async def send_checkin_reminder(self, to_email, confirm_url, attempt, attempts_limit, token_id):
        self.reminders.append(
            {"to": to_email, "url": confirm_url, "attempt": attempt, "token_id": token_id}
        )
        return True

    async def send_trusted_contact_alert(self, contact, owner_email):
        if contact.email in self.fail_for:
            return False
        self.alerts.append(contact.email)
        return True


class RecordingAudit:
    def __init__(self):
        self.events: list[dict] = []

    async def log(self, actor_id, action, metadata=None, **kwargs):
        self.events.append({"actor_id": actor_id, "action": action, "metadata": metadata, **kwargs})
        return True


@pytest.fixture
def message_store():
    return FakeMessageStore()


@pytest.fixture
def checkin_store(message_store):
    store = FakeCheckinStore(message_store)
    message_store.checkins = store
    return store


@pytest.fixture
def token_store():
    return FakeTokenStore()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def audit():
    return RecordingAudit()


@pytest.fixture
def profiles():
    return FakeProfileStore({"user-123": {"id": "user-123", "email": "owner@example.com", "plan": "pro"}})


@pytest.fixture
def contacts():
    return FakeContactStore(
        [
            TrustedContact(id="tc-1", user_id="user-123", name="Ana", email="ana@example.com"),
            TrustedContact(id="tc-2", user_id="user-123", name="Luis", email="luis@example.com"),
        ]
    )


def _make_message(
    message_id: str,
    rule: DeliveryRule,
    recipients: list[str],
    owner_id: str = "user-123",
    status: MessageStatus = MessageStatus.SCHEDULED,
) -> Message:
    return Message(
        id=message_id,
        owner_id=owner_id,
        type=MessageType.TEXT,
        status=status,
        text_content="hello",
        rule=rule,
        recipients=_with_ids(
            message_id, [Recipient(name=email.split("@")[0], email=email) for email in recipients]
        ),
    )


@pytest.fixture
def make_message():
    return _make_message


@pytest.fixture
def sender_factory():
    return RecordingSender
