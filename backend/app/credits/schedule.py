"""Monthly credit reset scheduling anchored on the billing cycle day."""
from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime

from .models import CreditPool, LedgerRecord


@dataclass(frozen=True)
class CreditResetSchedule:
    """Billing-cycle anchor day and the first reset derived from it."""

    reset_day: int
    next_reset: datetime


def add_billing_cycle(moment: datetime, reset_day: int) -> datetime:
    """Advance ``moment`` by one calendar month, landing on ``reset_day``.

    The day is clamped to the length of the target month, so an anchor of the
    31st resets on Feb 28/29 and returns to the 31st in March.
    """

    if moment.month == 12:
        year, month = moment.year + 1, 1
    else:
        year, month = moment.year, moment.month + 1
    day = min(reset_day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def initialize_credit_reset(period_start: datetime) -> CreditResetSchedule:
    reset_day = period_start.day
    return CreditResetSchedule(
        reset_day=reset_day,
        next_reset=add_billing_cycle(period_start, reset_day),
    )


def should_reset_credits(ledger: LedgerRecord, now: datetime) -> bool:
    return ledger.next_reset is not None and now >= ledger.next_reset


def _reset_pool(pool: CreditPool, now: datetime) -> CreditPool:
    if pool.carryover_active(now):
        return pool.model_copy(update={"used": 0})
    return pool.model_copy(update={"used": 0, "carryover": 0, "carryover_expiry": None})


def reset_monthly_credits(ledger: LedgerRecord, *, now: datetime) -> LedgerRecord:
    """Zero usage and roll ``next_reset`` forward exactly one cycle.

    The next reset is computed from the previous ``next_reset`` rather than
    ``now`` so late renewal notifications do not drift the schedule. Allowances
    are left for the caller to refresh from the plan catalog.
    """

    if ledger.next_reset is None:
        raise ValueError("ledger has no reset schedule")

    reset_day = ledger.reset_day or ledger.next_reset.day
    return ledger.model_copy(
        update={
            "ugc": _reset_pool(ledger.ugc, now),
            "faceless": _reset_pool(ledger.faceless, now),
            "next_reset": add_billing_cycle(ledger.next_reset, reset_day),
        }
    )
