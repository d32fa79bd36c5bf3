"""API tests for the billing webhook and credit endpoints."""
from __future__ import annotations

from types import SimpleNamespace

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from backend import main
from backend.app.billing import CreditAccountService, InMemoryLedgerRepository, ProviderAPIError
from backend.app.credits import CreditPool, CreditPoolName, LedgerRecord
from backend.app.routes import billing as billing_routes
from backend.app.schemas.billing import ConsumeCreditsRequest, CreditSummaryResponse

from conftest import NOW, STARTER_PRICE, sign_payload, webhook_body


@pytest.fixture
def client(billing_components, monkeypatch):
    service, repository, _, _, _ = billing_components
    accounts = CreditAccountService(repository=repository)
    monkeypatch.setattr(billing_routes, "get_billing_service", lambda: service)
    monkeypatch.setattr(billing_routes, "get_credit_account_service", lambda: accounts)
    app = main.create_app()
    app.dependency_overrides[billing_routes._get_current_user] = lambda: SimpleNamespace(id="user-1")
    return TestClient(app)


def _checkout_body() -> bytes:
    return webhook_body(
        "evt_checkout",
        "checkout.session.completed",
        {"mode": "subscription", "customer": "cus_1", "subscription": "sub_1", "customer_email": "ada@example.com"},
    )


def test_webhook_acknowledges_processed_event(client, billing_components):
    _, _, provider, _, _ = billing_components
    provider.add_subscription("sub_1", price_id=STARTER_PRICE)
    body = _checkout_body()

    response = client.post("/api/billing/webhook", content=body, headers={"Stripe-Signature": sign_payload(body)})

    assert response.status_code == 200
    assert response.json() == {
        "received": True,
        "outcome": "processed",
        "eventId": "evt_checkout",
        "transition": "initialized",
    }


def test_webhook_rejects_bad_signature(client):
    body = _checkout_body()

    response = client.post("/api/billing/webhook", content=body, headers={"Stripe-Signature": "t=1,v1=deadbeef"})

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "signature_invalid"


def test_webhook_requires_signature_header(client):
    response = client.post("/api/billing/webhook", content=_checkout_body())

    assert response.status_code == 400


def test_webhook_provider_failure_requests_redelivery(client, billing_components):
    _, _, provider, _, _ = billing_components
    provider.error = ProviderAPIError("Stripe unavailable")
    body = _checkout_body()

    response = client.post("/api/billing/webhook", content=body, headers={"Stripe-Signature": sign_payload(body)})

    assert response.status_code == 503
    assert response.json()["detail"]["error"] == "provider_api_error"


def test_webhook_skips_unknown_user_with_success_status(client, billing_components):
    _, _, provider, _, _ = billing_components
    provider.add_subscription("sub_1", price_id=STARTER_PRICE)
    body = webhook_body(
        "evt_orphan",
        "checkout.session.completed",
        {"subscription": "sub_1", "customer_email": "ghost@example.com"},
    )

    response = client.post("/api/billing/webhook", content=body, headers={"Stripe-Signature": sign_payload(body)})

    assert response.status_code == 200
    assert response.json()["outcome"] == "skipped"


def test_credit_summary_after_checkout(client, billing_components):
    _, _, provider, _, _ = billing_components
    provider.add_subscription("sub_1", price_id=STARTER_PRICE)
    body = _checkout_body()
    client.post("/api/billing/webhook", content=body, headers={"Stripe-Signature": sign_payload(body)})

    response = client.get("/api/billing/credits")

    payload = response.json()
    assert response.status_code == 200
    assert payload["planTier"] == "starter"
    assert payload["status"] == "active"
    assert payload["ugc"]["available"] == 5
    assert payload["faceless"]["allowed"] == 3
    assert payload["carryoverExpiry"] is None


def test_consume_endpoint_returns_402_when_short(client):
    response = client.post("/api/billing/credits/consume", json={"pool": "ugc", "amount": 1})

    assert response.status_code == 402
    assert response.json()["detail"]["pool"] == "ugc"


def test_consume_endpoint_validates_amount(client):
    response = client.post("/api/billing/credits/consume", json={"pool": "ugc", "amount": 0})

    assert response.status_code == 422


def test_credit_routes_require_session():
    app = main.create_app()

    response = TestClient(app).get("/api/billing/credits")

    assert response.status_code == 401


def test_consume_route_debits_ledger(monkeypatch):
    repository = InMemoryLedgerRepository()
    repository.put_ledger(LedgerRecord(user_id="7", faceless=CreditPool(allowed=3)))
    monkeypatch.setattr(
        billing_routes,
        "get_credit_account_service",
        lambda: CreditAccountService(repository=repository, clock=lambda: NOW),
    )

    response = billing_routes.consume_credits(
        ConsumeCreditsRequest(pool=CreditPoolName.FACELESS, amount=2),
        current_user=SimpleNamespace(id=7),
    )

    assert isinstance(response, CreditSummaryResponse)
    assert response.faceless.used == 2
    assert repository.get_ledger("7").faceless.used == 2


def test_consume_route_maps_insufficient_credits(monkeypatch):
    monkeypatch.setattr(
        billing_routes,
        "get_credit_account_service",
        lambda: CreditAccountService(repository=InMemoryLedgerRepository()),
    )

    with pytest.raises(HTTPException) as excinfo:
        billing_routes.consume_credits(
            ConsumeCreditsRequest(pool=CreditPoolName.UGC, amount=1),
            current_user=SimpleNamespace(id=7),
        )

    assert excinfo.value.status_code == 402
