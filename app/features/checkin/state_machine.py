"""
Check-in state machine.

Pure transition function, no I/O:

    transition(state, event, now, policy) -> new state

States:
    active            confirmed within the current interval
    pending           a due check passed without confirmation
    confirmed_absent  missed check-ins reached the attempts limit (terminal
                      until the owner confirms or an administrator resets)

Each due check counts one missed check-in. The check that brings
``attempts`` up to ``attempts_limit`` presumes absence; the earlier ones
move the check-in to pending and schedule the next due check one full
interval later. With a 30 day interval and a limit of 3, checks at +30,
+60 and +90 days go active -> pending -> pending -> confirmed_absent.
"""

from datetime import datetime, timedelta

from app.features.checkin.domain.models import (
    DEFAULT_INTERVAL_DAYS,
    CheckinEvent,
    CheckinPolicy,
    CheckinState,
    CheckinStatus,
)


def transition(
    state: CheckinState,
    event: CheckinEvent,
    now: datetime,
    policy: CheckinPolicy | None,
    *,
    default_interval_days: int = DEFAULT_INTERVAL_DAYS,
) -> CheckinState:
    """
    Apply ``event`` to ``state`` at time ``now``.

    Args:
        state: Current check-in state
        event: What happened
        now: Timezone-aware current time
        policy: Cadence from the user's scheduled check-in rules, or None
        default_interval_days: Interval used by confirmations when no rule exists

    Returns:
        The next state (the same object when nothing changes)
    """
    if event in (CheckinEvent.CONFIRM, CheckinEvent.RESET):
        interval = policy.interval_days if policy else default_interval_days
        return _confirmed(now, interval)

    if event is CheckinEvent.DUE_CHECK:
        return _due_check(state, now, policy)

    raise ValueError(f"Unknown check-in event: {event!r}")


def _confirmed(now: datetime, interval_days: int) -> CheckinState:
    return CheckinState(
        status=CheckinStatus.ACTIVE,
        attempts=0,
        last_confirmed_at=now,
        next_due_at=now + timedelta(days=interval_days),
    )


def _due_check(state: CheckinState, now: datetime, policy: CheckinPolicy | None) -> CheckinState:
    # No check-in rules: date-only users are never moved by the sweep
    if policy is None or not state.is_due(now):
        return state

    attempts = state.attempts + 1

    if attempts >= policy.attempts_limit:
        return CheckinState(
            status=CheckinStatus.CONFIRMED_ABSENT,
            attempts=attempts,
            last_confirmed_at=state.last_confirmed_at,
            next_due_at=state.next_due_at,
        )

    return CheckinState(
        status=CheckinStatus.PENDING,
        attempts=attempts,
        last_confirmed_at=state.last_confirmed_at,
        next_due_at=now + timedelta(days=policy.interval_days),
    )


def realign(state: CheckinState, policy: CheckinPolicy | None) -> CheckinState:
    """
    Re-derive next_due_at after the user's check-in rules changed.

    Only an active cycle is recomputed (last_confirmed_at + interval);
    pending and absent check-ins keep their reminder schedule.
    """
    if policy is None or state.status is not CheckinStatus.ACTIVE or state.last_confirmed_at is None:
        return state

    next_due_at = state.last_confirmed_at + timedelta(days=policy.interval_days)
    if next_due_at == state.next_due_at:
        return state

    return CheckinState(
        status=state.status,
        attempts=state.attempts,
        last_confirmed_at=state.last_confirmed_at,
        next_due_at=next_due_at,
    )


def days_remaining(state: CheckinState, now: datetime) -> int:
    """Whole days until the next due check (0 once overdue)."""
    if state.next_due_at is None or now >= state.next_due_at:
        return 0
    remaining = state.next_due_at - now
    return remaining.days + (1 if remaining.seconds or remaining.microseconds else 0)
