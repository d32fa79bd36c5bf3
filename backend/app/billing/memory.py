"""In-process ledger repository for local development and tests."""
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from ..credits.models import LedgerRecord


class _InMemoryLedgerTransaction:
    """Stages writes until the owning repository commits them."""

    def __init__(self, repository: "InMemoryLedgerRepository") -> None:
        self._repository = repository
        self.ledgers: Dict[str, LedgerRecord] = {}
        self.events: Dict[str, str] = {}

    def claim_event(self, event_id: str, event_type: str) -> bool:
        if event_id in self.events or event_id in self._repository._events:
            return False
        self.events[event_id] = event_type
        return True

    def find_user_id_by_email(self, email: str) -> Optional[str]:
        return self._repository._users.get(email.strip().lower())

    def _current(self, user_id: str) -> Optional[LedgerRecord]:
        if user_id in self.ledgers:
            return self.ledgers[user_id]
        return self._repository._ledgers.get(user_id)

    def lock_ledger(self, user_id: str, *, create: bool = False) -> Optional[LedgerRecord]:
        ledger = self._current(user_id)
        if ledger is None and create:
            ledger = LedgerRecord(user_id=user_id)
            self.ledgers[user_id] = ledger
        return ledger

    def lock_ledger_by_subscription(self, subscription_id: str) -> Optional[LedgerRecord]:
        merged = {**self._repository._ledgers, **self.ledgers}
        matches = [ledger for ledger in merged.values() if ledger.billing.subscription_id == subscription_id]
        if not matches:
            return None
        return max(matches, key=lambda ledger: ledger.updated_at)

    def save_ledger(self, ledger: LedgerRecord) -> LedgerRecord:
        previous = self._current(ledger.user_id)
        if previous is not None:
            update = {}
            if previous.reset_day is not None:
                update["reset_day"] = previous.reset_day
            if previous.next_reset is not None and (
                ledger.next_reset is None or previous.next_reset > ledger.next_reset
            ):
                update["next_reset"] = previous.next_reset
            if update:
                ledger = ledger.model_copy(update=update)
        self.ledgers[ledger.user_id] = ledger
        return ledger


class InMemoryLedgerRepository:
    """Thread-safe :class:`LedgerRepository` keeping state in dictionaries.

    A single re-entrant lock is held for the life of each transaction, which
    gives the same per-ledger serialization as row locks at coarser grain.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._users: Dict[str, str] = {}
        self._ledgers: Dict[str, LedgerRecord] = {}
        self._events: Dict[str, str] = {}

    def add_user(self, user_id: str, email: str) -> None:
        with self._lock:
            self._users[email.strip().lower()] = user_id

    def put_ledger(self, ledger: LedgerRecord) -> None:
        with self._lock:
            self._ledgers[ledger.user_id] = ledger

    @property
    def claimed_events(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._events)

    @contextmanager
    def transaction(self) -> Iterator[_InMemoryLedgerTransaction]:
        with self._lock:
            tx = _InMemoryLedgerTransaction(self)
            yield tx
            self._ledgers.update(tx.ledgers)
            self._events.update(tx.events)

    def get_ledger(self, user_id: str) -> Optional[LedgerRecord]:
        with self._lock:
            return self._ledgers.get(user_id)
