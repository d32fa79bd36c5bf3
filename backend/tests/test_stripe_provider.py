"""Tests for the Stripe provider adapter, without network access."""
from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
import stripe

from backend.app.billing import MalformedEventError, ProviderAPIError, StripePaymentProvider
from backend.app.billing.provider import subscription_snapshot

START = 1_709_942_400  # 2024-03-09T00:00:00Z
END = 1_712_620_800  # 2024-04-09T00:00:00Z


def _subscription(**overrides) -> dict:
    subscription = {
        "id": "sub_1",
        "customer": "cus_1",
        "status": "active",
        "current_period_start": START,
        "current_period_end": END,
        "items": {"data": [{"price": {"id": "price_a"}}]},
    }
    subscription.update(overrides)
    return subscription


def test_snapshot_reads_subscription_fields():
    snapshot = subscription_snapshot(_subscription())

    assert snapshot.subscription_id == "sub_1"
    assert snapshot.customer_id == "cus_1"
    assert snapshot.price_id == "price_a"
    assert snapshot.period_start == datetime(2024, 3, 9, tzinfo=timezone.utc)
    assert snapshot.period_end == datetime(2024, 4, 9, tzinfo=timezone.utc)


def test_snapshot_falls_back_to_item_period():
    subscription = _subscription(
        current_period_start=None,
        current_period_end=None,
        customer={"id": "cus_2"},
        items={"data": [{"price": "price_b", "current_period_start": START, "current_period_end": END}]},
    )

    snapshot = subscription_snapshot(subscription)

    assert snapshot.customer_id == "cus_2"
    assert snapshot.price_id == "price_b"
    assert snapshot.period_start == datetime(2024, 3, 9, tzinfo=timezone.utc)


def test_snapshot_marks_ended_subscriptions():
    assert subscription_snapshot(_subscription(status="canceled")).has_ended
    assert not subscription_snapshot(_subscription(status="past_due")).has_ended


def _fake_client(*, subscription=None, customer=None) -> SimpleNamespace:
    def unavailable(object_id):
        raise AssertionError(f"unexpected lookup of {object_id}")

    return SimpleNamespace(
        v1=SimpleNamespace(
            subscriptions=SimpleNamespace(retrieve=subscription or unavailable),
            customers=SimpleNamespace(retrieve=customer or unavailable),
        )
    )


def test_provider_builds_its_own_client_without_touching_module_settings():
    retries_before = stripe.max_network_retries
    http_client_before = stripe.default_http_client

    provider = StripePaymentProvider("sk_test_1", timeout=3, max_network_retries=1)

    assert isinstance(provider.client, stripe.StripeClient)
    assert stripe.max_network_retries == retries_before
    assert stripe.default_http_client is http_client_before


def test_retrieve_subscription_uses_instance_client():
    requested = []

    def retrieve(subscription_id):
        requested.append(subscription_id)
        return _subscription()

    provider = StripePaymentProvider("sk_test_1", client=_fake_client(subscription=retrieve))

    snapshot = provider.retrieve_subscription("sub_1")

    assert snapshot.price_id == "price_a"
    assert requested == ["sub_1"]


def test_missing_object_maps_to_malformed_event():
    def retrieve(subscription_id):
        raise stripe.InvalidRequestError("No such subscription", "id")

    provider = StripePaymentProvider("sk_test_1", client=_fake_client(subscription=retrieve))

    with pytest.raises(MalformedEventError):
        provider.retrieve_subscription("sub_gone")


def test_transport_errors_map_to_provider_error():
    def retrieve(customer_id):
        raise stripe.APIConnectionError("timed out")

    provider = StripePaymentProvider("sk_test_1", client=_fake_client(customer=retrieve))

    with pytest.raises(ProviderAPIError) as excinfo:
        provider.retrieve_customer("cus_1")

    assert excinfo.value.status_code == 503


def test_customer_email_read_from_metadata():
    client = _fake_client(
        customer=lambda customer_id: {"id": customer_id, "email": None, "metadata": {"email": "meta@example.com"}},
    )

    customer = StripePaymentProvider("sk_test_1", client=client).retrieve_customer("cus_1")

    assert customer.email == "meta@example.com"


def test_missing_secret_key_is_a_provider_error():
    provider = StripePaymentProvider(None)

    assert provider.client is None
    with pytest.raises(ProviderAPIError):
        provider.retrieve_subscription("sub_1")
