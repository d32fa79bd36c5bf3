"""Carryover of unused credits across mid-cycle plan changes."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from .models import CreditPool

DEFAULT_CARRYOVER_GRACE = timedelta(days=30)


@dataclass(frozen=True)
class CarryoverResult:
    """Carryover amount and expiry proposed for one pool."""

    amount: int
    expiry: Optional[datetime]


def compute_carryover(
    allowed: int,
    used: int,
    existing_carryover: int,
    existing_expiry: Optional[datetime],
    *,
    now: datetime,
    grace: timedelta = DEFAULT_CARRYOVER_GRACE,
) -> CarryoverResult:
    """Preserve the unused allowance, stacking onto carryover that has not expired yet.

    Expired carryover is forfeited rather than stacked. The returned expiry is
    ``now + grace`` whenever anything is carried, otherwise ``None``.
    """

    unused = max(0, allowed - used)
    amount = unused
    if existing_expiry is not None and existing_expiry > now:
        amount += max(0, existing_carryover)

    if amount <= 0:
        return CarryoverResult(amount=0, expiry=None)
    return CarryoverResult(amount=amount, expiry=now + grace)


def carry_pool(
    pool: CreditPool,
    *,
    now: datetime,
    grace: timedelta = DEFAULT_CARRYOVER_GRACE,
) -> CreditPool:
    """Return ``pool`` with its carryover recomputed; allowance and usage are untouched."""

    result = compute_carryover(
        pool.allowed,
        pool.used,
        pool.carryover,
        pool.carryover_expiry,
        now=now,
        grace=grace,
    )
    return pool.model_copy(update={"carryover": result.amount, "carryover_expiry": result.expiry})


def latest_expiry(*expiries: Optional[datetime]) -> Optional[datetime]:
    """Pick the later of the non-null expiries so longer-lived credits never expire early."""

    present = [expiry for expiry in expiries if expiry is not None]
    return max(present) if present else None
