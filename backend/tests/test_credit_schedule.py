"""Tests for the monthly credit reset schedule."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from backend.app.credits import (
    CreditPool,
    LedgerRecord,
    add_billing_cycle,
    initialize_credit_reset,
    reset_monthly_credits,
    should_reset_credits,
)


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_initialize_uses_period_start_day():
    schedule = initialize_credit_reset(_utc(2024, 1, 15, 9, 30))

    assert schedule.reset_day == 15
    assert schedule.next_reset == _utc(2024, 2, 15, 9, 30)


@pytest.mark.parametrize(
    "moment, reset_day, expected",
    [
        (_utc(2024, 1, 31), 31, _utc(2024, 2, 29)),
        (_utc(2023, 1, 31), 31, _utc(2023, 2, 28)),
        (_utc(2024, 2, 29), 31, _utc(2024, 3, 31)),
        (_utc(2024, 12, 5), 5, _utc(2025, 1, 5)),
        (_utc(2024, 4, 30), 30, _utc(2024, 5, 30)),
    ],
)
def test_add_billing_cycle_clamps_to_month_length(moment, reset_day, expected):
    assert add_billing_cycle(moment, reset_day) == expected


def test_should_reset_only_once_due():
    ledger = LedgerRecord(user_id="u", reset_day=10, next_reset=_utc(2024, 4, 10))

    assert not should_reset_credits(ledger, _utc(2024, 4, 9, 23, 59))
    assert should_reset_credits(ledger, _utc(2024, 4, 10))
    assert not should_reset_credits(LedgerRecord(user_id="u"), _utc(2030, 1, 1))


def test_reset_zeroes_usage_and_advances_from_previous_reset():
    now = _utc(2024, 4, 12)
    ledger = LedgerRecord(
        user_id="u",
        ugc=CreditPool(allowed=20, used=17, carryover=2, carryover_expiry=now + timedelta(days=3)),
        faceless=CreditPool(allowed=10, used=4, carryover=1, carryover_expiry=now - timedelta(days=1)),
        reset_day=10,
        next_reset=_utc(2024, 4, 10),
    )

    updated = reset_monthly_credits(ledger, now=now)

    assert updated.ugc.used == 0
    assert updated.faceless.used == 0
    assert updated.ugc.carryover == 2
    assert updated.faceless.carryover == 0
    assert updated.faceless.carryover_expiry is None
    assert updated.ugc.allowed == 20
    assert updated.next_reset == _utc(2024, 5, 10)
    assert updated.reset_day == 10


def test_reset_returns_to_anchor_day_after_short_month():
    ledger = LedgerRecord(user_id="u", reset_day=31, next_reset=_utc(2024, 2, 29))

    updated = reset_monthly_credits(ledger, now=_utc(2024, 2, 29))

    assert updated.next_reset == _utc(2024, 3, 31)


def test_reset_without_schedule_is_rejected():
    with pytest.raises(ValueError):
        reset_monthly_credits(LedgerRecord(user_id="u"), now=_utc(2024, 1, 1))
