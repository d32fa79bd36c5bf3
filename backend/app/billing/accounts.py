"""Read and debit access to a user's credit ledger."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from ..credits.models import CreditPoolName, LedgerRecord
from ..credits.usage import consume_credits
from .repository import LedgerRepository

logger = logging.getLogger("billing")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class CreditAccountService:
    """Serves credit balances and debits them under the ledger row lock."""

    repository: LedgerRepository
    clock: Callable[[], datetime] = _utcnow

    def summary(self, user_id: str) -> LedgerRecord:
        """Return the user's ledger, or a blank one when none exists yet."""

        ledger = self.repository.get_ledger(user_id)
        return ledger if ledger is not None else LedgerRecord(user_id=user_id, updated_at=self.clock())

    def consume(self, user_id: str, pool: CreditPoolName, amount: int) -> LedgerRecord:
        now = self.clock()
        with self.repository.transaction() as tx:
            ledger = tx.lock_ledger(user_id)
            if ledger is None:
                ledger = LedgerRecord(user_id=user_id, updated_at=now)
            # Raises InsufficientCreditsError before anything is written.
            updated = consume_credits(ledger, pool, amount, now=now)
            saved = tx.save_ledger(updated)

        logger.info(
            "Consumed %s %s credits for user %s",
            amount,
            pool.value,
            user_id,
            extra={"user_id": user_id, "pool": pool.value, "amount": amount},
        )
        return saved
