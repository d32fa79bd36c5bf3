"""Shared fakes and fixtures for the credit ledger tests."""
from __future__ import annotations

import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import pytest

from backend.app.billing import (
    BillingAuditEvent,
    BillingWebhookError,
    BillingWebhookService,
    InMemoryLedgerRepository,
    StripeWebhookVerifier,
)
from backend.app.billing.service import BillingAlerter, BillingEventLogger
from backend.app.billing.provider import PaymentProvider
from backend.app.credits import (
    CustomerSnapshot,
    PlanCatalog,
    ReconciliationEngine,
    SubscriptionSnapshot,
    load_plan_catalog,
)

WEBHOOK_SECRET = "whsec_test_secret"

STARTER_PRICE = "price_1SXZ4TBEStw3HK5gLIRBc7mU"
PROFESSIONAL_PRICE = "price_1SXZ4oBEStw3HK5g47Tp0opH"
BUSINESS_PRICE = "price_1SXZ55BEStw3HK5gciuiffxs"

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class FakePaymentProvider(PaymentProvider):
    def __init__(self) -> None:
        self.subscriptions: Dict[str, SubscriptionSnapshot] = {}
        self.customers: Dict[str, CustomerSnapshot] = {}
        self.error: Optional[BillingWebhookError] = None
        self.calls: List[Tuple[str, str]] = []

    def add_subscription(
        self,
        subscription_id: str,
        *,
        price_id: str,
        customer_id: str = "cus_1",
        status: str = "active",
        period_start: datetime = NOW,
        period_end: Optional[datetime] = None,
    ) -> SubscriptionSnapshot:
        snapshot = SubscriptionSnapshot(
            subscription_id=subscription_id,
            customer_id=customer_id,
            price_id=price_id,
            status=status,
            period_start=period_start,
            period_end=period_end or period_start + timedelta(days=30),
        )
        self.subscriptions[subscription_id] = snapshot
        return snapshot

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        self.calls.append(("subscription", subscription_id))
        if self.error is not None:
            raise self.error
        return self.subscriptions[subscription_id]

    def retrieve_customer(self, customer_id: str) -> CustomerSnapshot:
        self.calls.append(("customer", customer_id))
        if self.error is not None:
            raise self.error
        return self.customers.get(customer_id, CustomerSnapshot(customer_id=customer_id))


class RecordingEventLogger(BillingEventLogger):
    def __init__(self) -> None:
        self.events: List[BillingAuditEvent] = []

    def log(self, event: BillingAuditEvent) -> None:
        self.events.append(event)


class RecordingAlerter(BillingAlerter):
    def __init__(self) -> None:
        self.provider_failures: List[str] = []
        self.persistence_failures: List[str] = []
        self.skipped: List[Tuple[Optional[str], str]] = []

    def notify_provider_failure(self, event_type: str, event_id: str, error: BillingWebhookError) -> None:
        self.provider_failures.append(event_id)

    def notify_persistence_failure(self, event_type: str, event_id: str, error: BillingWebhookError) -> None:
        self.persistence_failures.append(event_id)

    def notify_skipped_event(
        self,
        event_type: Optional[str],
        event_id: Optional[str],
        error: BillingWebhookError,
    ) -> None:
        self.skipped.append((event_id, error.code))


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a ``Stripe-Signature`` header for ``payload``."""

    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def webhook_body(event_id: str, event_type: str, data_object: dict) -> bytes:
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": data_object}}).encode("utf-8")


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def catalog() -> PlanCatalog:
    return load_plan_catalog()


@pytest.fixture
def engine(catalog: PlanCatalog) -> ReconciliationEngine:
    return ReconciliationEngine(catalog=catalog)


@pytest.fixture
def billing_components(engine: ReconciliationEngine, clock: FixedClock):
    repository = InMemoryLedgerRepository()
    repository.add_user("user-1", "Ada@Example.com")
    provider = FakePaymentProvider()
    event_logger = RecordingEventLogger()
    alerter = RecordingAlerter()
    service = BillingWebhookService(
        repository=repository,
        provider=provider,
        verifier=StripeWebhookVerifier(WEBHOOK_SECRET),
        engine=engine,
        event_logger=event_logger,
        alerter=alerter,
        clock=clock,
    )
    return service, repository, provider, event_logger, alerter
