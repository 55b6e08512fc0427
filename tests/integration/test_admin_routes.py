from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient

from app.auth.verify import current_user_id
from app.features.checkin.domain import CheckinState, CheckinStatus
from app.features.checkin.services.checkin_service import CheckinService
from app.main import app

client = TestClient(app)


@pytest.fixture
def admin_reset(monkeypatch, checkin_store, token_store, message_store, profiles, sender, audit):
    service = CheckinService(
        checkins=checkin_store,
        tokens=token_store,
        messages=message_store,
        profiles=profiles,
        engine=AsyncMock(),
        sender=sender,
        audit=audit,
        default_interval_days=30,
    )
    audit_admin_action = AsyncMock()
    monkeypatch.setattr("app.routes.admin.checkin_service", service)
    monkeypatch.setattr("app.routes.admin.audit_admin_action", audit_admin_action)
    monkeypatch.setattr("app.routes.admin.ProfileRepository.get", profiles.get)
    monkeypatch.setattr("app.auth.admin.ProfileRepository.is_admin", AsyncMock(return_value=True))
    monkeypatch.setattr("app.auth.admin.dispatch_security_event", Mock())
    monkeypatch.setattr("app.middleware.rate_limit_dependencies.settings.RATE_LIMIT_ENABLED", False)
    app.dependency_overrides[current_user_id] = lambda: "admin-1"
    yield checkin_store, audit_admin_action
    app.dependency_overrides.clear()


def test_reset_unknown_user_returns_404(admin_reset):
    checkin_store, audit_admin_action = admin_reset

    response = client.post("/admin/checkins/no-such-user/reset")

    assert response.status_code == 404
    assert response.json()["detail"] == "User not found"
    assert checkin_store.rows == {}
    audit_admin_action.assert_not_awaited()


def test_reset_absent_user_back_to_active(admin_reset):
    checkin_store, audit_admin_action = admin_reset
    long_ago = datetime.now(UTC) - timedelta(days=200)
    checkin_store.rows["user-123"] = CheckinState(
        status=CheckinStatus.CONFIRMED_ABSENT,
        attempts=3,
        last_confirmed_at=long_ago,
        next_due_at=long_ago,
    )

    response = client.post("/admin/checkins/user-123/reset")

    assert response.status_code == 200
    assert response.json()["status"] == "active"
    assert checkin_store.rows["user-123"].status is CheckinStatus.ACTIVE
    assert audit_admin_action.await_args.kwargs["metadata"] == {
        "previous_status": "confirmed_absent"
    }
