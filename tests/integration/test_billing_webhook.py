import hashlib
import hmac
import json
import time
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from app.auth.verify import current_user_id
from app.main import app
from app.services.billing_service import billing_service

client = TestClient(app)

WEBHOOK_SECRET = "whsec_test"


def _signed(event: dict, secret: str = WEBHOOK_SECRET) -> tuple[bytes, str]:
    payload = json.dumps(event).encode()
    timestamp = int(time.time())
    signature = hmac.new(
        secret.encode(), f"{timestamp}.{payload.decode()}".encode(), hashlib.sha256
    ).hexdigest()
    return payload, f"t={timestamp},v1={signature}"


@pytest.fixture
def profiles(monkeypatch):
    profiles = MagicMock()
    profiles.activate_subscription = AsyncMock()
    profiles.update_plan_for_customer = AsyncMock(return_value="user-123")
    profiles.get = AsyncMock(return_value={"id": "user-123", "stripe_customer_id": "cus_1"})
    monkeypatch.setattr(billing_service, "profiles", profiles)
    monkeypatch.setattr("app.services.billing_service.settings.STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setattr("app.services.billing_service.settings.STRIPE_SECRET_KEY", "sk_test")
    return profiles


def _post(event: dict, secret: str = WEBHOOK_SECRET):
    payload, header = _signed(event, secret)
    return client.post(
        "/billing/webhook",
        content=payload,
        headers={"stripe-signature": header, "content-type": "application/json"},
    )


def test_checkout_completed_upgrades_to_pro(profiles):
    response = _post(
        {
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": "cs_1",
                    "customer": "cus_1",
                    "subscription": "sub_1",
                    "metadata": {"user_id": "user-123"},
                }
            },
        }
    )

    assert response.status_code == 200
    assert response.json() == {"received": True}
    profiles.activate_subscription.assert_awaited_once_with("user-123", "cus_1", "sub_1")


def test_subscription_status_maps_to_plan(profiles):
    _post(
        {
            "type": "customer.subscription.updated",
            "data": {"object": {"customer": "cus_1", "status": "past_due"}},
        }
    )
    _post(
        {
            "type": "customer.subscription.created",
            "data": {"object": {"customer": "cus_1", "status": "trialing"}},
        }
    )

    calls = [c.args for c in profiles.update_plan_for_customer.await_args_list]
    assert calls == [("cus_1", "free"), ("cus_1", "pro")]


def test_subscription_deleted_downgrades(profiles):
    _post(
        {
            "type": "customer.subscription.deleted",
            "data": {"object": {"customer": "cus_1", "status": "canceled"}},
        }
    )

    profiles.update_plan_for_customer.assert_awaited_once_with("cus_1", "free")


def test_unrelated_event_ignored(profiles):
    response = _post({"type": "invoice.paid", "data": {"object": {}}})

    assert response.status_code == 200
    profiles.update_plan_for_customer.assert_not_awaited()


def test_bad_signature_rejected(profiles):
    response = _post(
        {"type": "customer.subscription.deleted", "data": {"object": {"customer": "cus_1"}}},
        secret="whsec_other",
    )

    assert response.status_code == 400
    profiles.update_plan_for_customer.assert_not_awaited()


def test_missing_signature_rejected(profiles):
    response = client.post("/billing/webhook", content=b"{}")

    assert response.status_code == 400


def test_portal_session(profiles, monkeypatch):
    create = MagicMock(return_value=SimpleNamespace(url="https://billing.stripe.com/p/session"))
    monkeypatch.setattr("app.services.billing_service.stripe.billing_portal.Session.create", create)
    app.dependency_overrides[current_user_id] = lambda: "user-123"
    try:
        response = client.post("/billing/portal")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    assert response.json()["url"] == "https://billing.stripe.com/p/session"
    assert create.call_args.kwargs["customer"] == "cus_1"


def test_portal_without_customer(profiles):
    profiles.get = AsyncMock(return_value={"id": "user-123", "stripe_customer_id": None})
    app.dependency_overrides[current_user_id] = lambda: "user-123"
    try:
        response = client.post("/billing/portal")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 404
