"""Persistence layer for credit ledgers and webhook event claims."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import ContextManager, Iterator, Optional, Protocol

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ..credits.models import BillingState, CreditPool, LedgerRecord, SubscriptionStatus
from .exceptions import PersistenceError

try:  # pragma: no cover - resolve connection helper when imported from FastAPI app
    from backend.app_context import get_conn
except ModuleNotFoundError as exc:  # pragma: no cover
    if exc.name != "backend":
        raise
    from ...app_context import get_conn  # type: ignore[no-redef]

logger = logging.getLogger("billing")

LEDGER_SCHEMA = """
CREATE TABLE IF NOT EXISTS credit_ledgers (
    user_id TEXT PRIMARY KEY,
    customer_id TEXT,
    subscription_id TEXT,
    price_id TEXT,
    status TEXT NOT NULL DEFAULT 'none',
    plan_tier TEXT NOT NULL DEFAULT 'none',
    period_start TIMESTAMPTZ,
    period_end TIMESTAMPTZ,
    ugc_allowed INTEGER NOT NULL DEFAULT 0 CHECK (ugc_allowed >= 0),
    ugc_used INTEGER NOT NULL DEFAULT 0 CHECK (ugc_used >= 0),
    ugc_carryover INTEGER NOT NULL DEFAULT 0 CHECK (ugc_carryover >= 0),
    ugc_carryover_expiry TIMESTAMPTZ,
    faceless_allowed INTEGER NOT NULL DEFAULT 0 CHECK (faceless_allowed >= 0),
    faceless_used INTEGER NOT NULL DEFAULT 0 CHECK (faceless_used >= 0),
    faceless_carryover INTEGER NOT NULL DEFAULT 0 CHECK (faceless_carryover >= 0),
    faceless_carryover_expiry TIMESTAMPTZ,
    reset_day SMALLINT CHECK (reset_day BETWEEN 1 AND 31),
    next_reset TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CHECK ((ugc_carryover = 0) = (ugc_carryover_expiry IS NULL)),
    CHECK ((faceless_carryover = 0) = (faceless_carryover_expiry IS NULL))
);
CREATE INDEX IF NOT EXISTS credit_ledgers_subscription_idx ON credit_ledgers (subscription_id);
CREATE TABLE IF NOT EXISTS billing_webhook_events (
    event_id TEXT PRIMARY KEY,
    event_type TEXT NOT NULL,
    received_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


class LedgerTransaction(Protocol):
    """Operations available while a ledger transaction is open.

    Rows returned by the ``lock_*`` methods stay locked until the transaction
    ends, so concurrent deliveries for the same user are serialized.
    """

    def claim_event(self, event_id: str, event_type: str) -> bool:
        ...

    def find_user_id_by_email(self, email: str) -> Optional[str]:
        ...

    def lock_ledger(self, user_id: str, *, create: bool = False) -> Optional[LedgerRecord]:
        ...

    def lock_ledger_by_subscription(self, subscription_id: str) -> Optional[LedgerRecord]:
        ...

    def save_ledger(self, ledger: LedgerRecord) -> LedgerRecord:
        ...


class LedgerRepository(Protocol):
    """Persistence operations required by the billing services."""

    def transaction(self) -> ContextManager[LedgerTransaction]:
        ...

    def get_ledger(self, user_id: str) -> Optional[LedgerRecord]:
        ...


def _pool_from_row(row: dict, prefix: str) -> CreditPool:
    return CreditPool(
        allowed=int(row[f"{prefix}_allowed"]),
        used=int(row[f"{prefix}_used"]),
        carryover=int(row[f"{prefix}_carryover"]),
        carryover_expiry=row.get(f"{prefix}_carryover_expiry"),
    )


def _row_to_ledger(row: dict) -> LedgerRecord:
    return LedgerRecord(
        user_id=str(row["user_id"]),
        billing=BillingState(
            customer_id=row.get("customer_id"),
            subscription_id=row.get("subscription_id"),
            price_id=row.get("price_id"),
            status=SubscriptionStatus(row["status"]),
            plan_tier=row["plan_tier"],
            period_start=row.get("period_start"),
            period_end=row.get("period_end"),
        ),
        ugc=_pool_from_row(row, "ugc"),
        faceless=_pool_from_row(row, "faceless"),
        reset_day=row.get("reset_day"),
        next_reset=row.get("next_reset"),
        updated_at=row["updated_at"],
    )


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = get_conn()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


class _PostgresLedgerTransaction:
    """:class:`LedgerTransaction` bound to one open cursor."""

    def __init__(self, cursor: PgCursor) -> None:
        self._cursor = cursor

    def claim_event(self, event_id: str, event_type: str) -> bool:
        self._cursor.execute(
            """
            INSERT INTO billing_webhook_events (event_id, event_type, received_at)
            VALUES (%s, %s, NOW())
            ON CONFLICT (event_id) DO NOTHING
            """,
            (event_id, event_type),
        )
        return self._cursor.rowcount > 0

    def find_user_id_by_email(self, email: str) -> Optional[str]:
        self._cursor.execute(
            "SELECT id FROM users WHERE lower(email) = lower(%s) ORDER BY id LIMIT 1",
            (email.strip(),),
        )
        row = self._cursor.fetchone()
        return str(row["id"]) if row else None

    def lock_ledger(self, user_id: str, *, create: bool = False) -> Optional[LedgerRecord]:
        if create:
            self._cursor.execute(
                "INSERT INTO credit_ledgers (user_id) VALUES (%s) ON CONFLICT (user_id) DO NOTHING",
                (user_id,),
            )
        self._cursor.execute(
            "SELECT * FROM credit_ledgers WHERE user_id = %s FOR UPDATE",
            (user_id,),
        )
        row = self._cursor.fetchone()
        return _row_to_ledger(row) if row else None

    def lock_ledger_by_subscription(self, subscription_id: str) -> Optional[LedgerRecord]:
        self._cursor.execute(
            """
            SELECT * FROM credit_ledgers
            WHERE subscription_id = %s
            ORDER BY updated_at DESC
            LIMIT 1
            FOR UPDATE
            """,
            (subscription_id,),
        )
        row = self._cursor.fetchone()
        return _row_to_ledger(row) if row else None

    def save_ledger(self, ledger: LedgerRecord) -> LedgerRecord:
        billing = ledger.billing
        self._cursor.execute(
            """
            INSERT INTO credit_ledgers (
                user_id,
                customer_id,
                subscription_id,
                price_id,
                status,
                plan_tier,
                period_start,
                period_end,
                ugc_allowed,
                ugc_used,
                ugc_carryover,
                ugc_carryover_expiry,
                faceless_allowed,
                faceless_used,
                faceless_carryover,
                faceless_carryover_expiry,
                reset_day,
                next_reset,
                updated_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (user_id) DO UPDATE SET
                customer_id = EXCLUDED.customer_id,
                subscription_id = EXCLUDED.subscription_id,
                price_id = EXCLUDED.price_id,
                status = EXCLUDED.status,
                plan_tier = EXCLUDED.plan_tier,
                period_start = EXCLUDED.period_start,
                period_end = EXCLUDED.period_end,
                ugc_allowed = EXCLUDED.ugc_allowed,
                ugc_used = EXCLUDED.ugc_used,
                ugc_carryover = EXCLUDED.ugc_carryover,
                ugc_carryover_expiry = EXCLUDED.ugc_carryover_expiry,
                faceless_allowed = EXCLUDED.faceless_allowed,
                faceless_used = EXCLUDED.faceless_used,
                faceless_carryover = EXCLUDED.faceless_carryover,
                faceless_carryover_expiry = EXCLUDED.faceless_carryover_expiry,
                reset_day = COALESCE(credit_ledgers.reset_day, EXCLUDED.reset_day),
                next_reset = GREATEST(credit_ledgers.next_reset, EXCLUDED.next_reset),
                updated_at = EXCLUDED.updated_at
            RETURNING *
            """,
            (
                ledger.user_id,
                billing.customer_id,
                billing.subscription_id,
                billing.price_id,
                billing.status.value,
                billing.plan_tier,
                billing.period_start,
                billing.period_end,
                ledger.ugc.allowed,
                ledger.ugc.used,
                ledger.ugc.carryover,
                ledger.ugc.carryover_expiry,
                ledger.faceless.allowed,
                ledger.faceless.used,
                ledger.faceless.carryover,
                ledger.faceless.carryover_expiry,
                ledger.reset_day,
                ledger.next_reset,
                ledger.updated_at,
            ),
        )
        row = self._cursor.fetchone()
        if row is None:
            raise PersistenceError(f"Ledger for user {ledger.user_id} was not written")
        return _row_to_ledger(row)


class PostgresLedgerRepository:
    """Concrete repository persisting credit ledgers in PostgreSQL."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def transaction(self) -> Iterator[_PostgresLedgerTransaction]:
        """Open one database transaction; commit on success, roll back on error."""

        try:
            with managed_connection(self._conn) as (connection, _managed):
                cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
                try:
                    yield _PostgresLedgerTransaction(cursor)
                finally:
                    cursor.close()
        except psycopg2.Error as exc:
            logger.exception("Ledger transaction failed")
            raise PersistenceError("Ledger store operation failed") from exc

    def get_ledger(self, user_id: str) -> Optional[LedgerRecord]:
        try:
            with managed_connection(self._conn) as (connection, _managed):
                with connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cursor:
                    cursor.execute("SELECT * FROM credit_ledgers WHERE user_id = %s", (user_id,))
                    row = cursor.fetchone()
        except psycopg2.Error as exc:
            logger.exception("Ledger lookup failed for user %s", user_id)
            raise PersistenceError("Ledger store operation failed") from exc
        return _row_to_ledger(row) if row else None

    def ensure_schema(self) -> None:
        """Create the ledger tables when they do not exist yet."""

        try:
            with managed_connection(self._conn) as (connection, _managed):
                with connection.cursor() as cursor:
                    cursor.execute(LEDGER_SCHEMA)
        except psycopg2.Error as exc:
            raise PersistenceError("Failed to create ledger tables") from exc
