import math

import pytest

from app.features.delivery.domain import MessageType
from app.services.plans import (
    PlanLimitError,
    ensure_can_add_trusted_contact,
    ensure_can_create_message,
    ensure_checkin_interval_allowed,
    ensure_type_allowed,
    get_plan_limits,
    normalize_plan,
    resolve_attempts_limit,
)


def test_unknown_plan_falls_back_to_free():
    assert normalize_plan(None) == "free"
    assert normalize_plan("enterprise") == "free"
    assert get_plan_limits("enterprise") == get_plan_limits("free")


def test_free_plan_allows_one_active_message():
    ensure_can_create_message("free", 0)

    with pytest.raises(PlanLimitError) as exc:
        ensure_can_create_message("free", 1)
    assert exc.value.limit == 1


def test_pro_plan_has_no_message_limit():
    assert get_plan_limits("pro").max_active_messages == math.inf
    ensure_can_create_message("pro", 10_000)


def test_video_is_pro_only():
    ensure_type_allowed("pro", MessageType.VIDEO)

    with pytest.raises(PlanLimitError):
        ensure_type_allowed("free", MessageType.VIDEO)


def test_checkin_intervals_by_plan():
    ensure_checkin_interval_allowed("free", 30)
    for days in (30, 60, 90):
        ensure_checkin_interval_allowed("pro", days)

    with pytest.raises(PlanLimitError):
        ensure_checkin_interval_allowed("free", 90)
    with pytest.raises(PlanLimitError):
        ensure_checkin_interval_allowed("pro", 45)


def test_attempts_limit_ceiling():
    assert resolve_attempts_limit("free", None) == 2
    assert resolve_attempts_limit("pro", 1) == 1

    with pytest.raises(PlanLimitError):
        resolve_attempts_limit("free", 3)
    with pytest.raises(PlanLimitError):
        resolve_attempts_limit("pro", 5)


def test_trusted_contact_limits():
    ensure_can_add_trusted_contact("free", 0)
    ensure_can_add_trusted_contact("pro", 2)

    with pytest.raises(PlanLimitError):
        ensure_can_add_trusted_contact("free", 1)
    with pytest.raises(PlanLimitError):
        ensure_can_add_trusted_contact("pro", 3)
