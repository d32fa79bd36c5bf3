"""Spending credits against a ledger."""
from __future__ import annotations

from datetime import datetime

from .exceptions import InsufficientCreditsError
from .models import CreditPoolName, LedgerRecord


def available_credits(ledger: LedgerRecord, pool: CreditPoolName, *, now: datetime) -> int:
    return ledger.pool(pool).available(now)


def consume_credits(
    ledger: LedgerRecord,
    pool: CreditPoolName,
    amount: int,
    *,
    now: datetime,
) -> LedgerRecord:
    """Debit ``amount`` credits, drawing on the monthly allowance before carryover.

    Carryover spent here is removed from the pool so a later plan change
    cannot carry it a second time.
    """

    if amount < 1:
        raise ValueError("amount must be >= 1")

    current = ledger.pool(pool)
    available = current.available(now)
    if available < amount:
        raise InsufficientCreditsError(pool=pool.value, requested=amount, available=available)

    from_allowance = min(amount, current.remaining_allowance())
    from_carryover = amount - from_allowance
    carryover = current.carryover - from_carryover
    updated = current.model_copy(
        update={
            "used": current.used + from_allowance,
            "carryover": carryover,
            "carryover_expiry": current.carryover_expiry if carryover > 0 else None,
        }
    )
    return ledger.with_pool(pool, updated).model_copy(update={"updated_at": now})
