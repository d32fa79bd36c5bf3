"""Payment provider integration: signature verification and object retrieval."""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

import stripe

from ..credits.models import CustomerSnapshot, SubscriptionSnapshot
from .exceptions import (
    MalformedEventError,
    ProviderAPIError,
    SignatureInvalidError,
    WebhookNotConfiguredError,
)

logger = logging.getLogger("billing")

DEFAULT_WEBHOOK_TOLERANCE = 300


class PaymentProvider(Protocol):
    """Read access to provider-side subscription and customer objects."""

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        ...

    def retrieve_customer(self, customer_id: str) -> CustomerSnapshot:
        ...


class WebhookVerifier(Protocol):
    """Authenticates raw webhook deliveries."""

    def verify(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        ...


def _field(obj: Any, key: str) -> Any:
    """Read ``key`` from a provider object or a plain mapping."""

    if obj is None:
        return None
    try:
        return obj[key]
    except KeyError:
        return None
    except TypeError:
        return getattr(obj, key, None)


def _reference_id(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value or None
    return _field(value, "id")


def _from_timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _first_item(subscription: Any) -> Any:
    items = _field(_field(subscription, "items"), "data") or []
    return items[0] if items else None


def subscription_snapshot(subscription: Any) -> SubscriptionSnapshot:
    """Project a provider subscription object onto the fields the ledger uses.

    Recent API versions report the billing period on each subscription item
    rather than on the subscription, so both locations are consulted.
    """

    item = _first_item(subscription)
    period_start = _field(subscription, "current_period_start") or _field(item, "current_period_start")
    period_end = _field(subscription, "current_period_end") or _field(item, "current_period_end")
    return SubscriptionSnapshot(
        subscription_id=_field(subscription, "id"),
        customer_id=_reference_id(_field(subscription, "customer")),
        price_id=_reference_id(_field(item, "price")),
        status=_field(subscription, "status") or "active",
        period_start=_from_timestamp(period_start),
        period_end=_from_timestamp(period_end),
    )


class StripePaymentProvider:
    """:class:`PaymentProvider` backed by the Stripe API.

    Timeout and retry settings live on the instance's own
    :class:`stripe.StripeClient`, not on the ``stripe`` module.
    """

    def __init__(
        self,
        api_key: Optional[str],
        *,
        timeout: float = 10.0,
        max_network_retries: int = 2,
        client: Optional[Any] = None,
    ) -> None:
        if client is None and api_key:
            client = stripe.StripeClient(
                api_key,
                http_client=stripe.RequestsClient(timeout=timeout),
                max_network_retries=max_network_retries,
            )
        self._client = client

    @property
    def client(self) -> Any:
        return self._client

    def _require_client(self) -> Any:
        if self._client is None:
            raise ProviderAPIError("Stripe secret key is not configured")
        return self._client

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        client = self._require_client()
        try:
            subscription = client.v1.subscriptions.retrieve(subscription_id)
        except stripe.InvalidRequestError as exc:
            raise MalformedEventError(
                f"Subscription {subscription_id} could not be retrieved",
                detail={"subscription_id": subscription_id},
            ) from exc
        except stripe.StripeError as exc:
            logger.warning("Stripe subscription lookup failed for %s: %s", subscription_id, exc)
            raise ProviderAPIError(
                "Failed to retrieve subscription from Stripe",
                detail={"subscription_id": subscription_id},
            ) from exc
        return subscription_snapshot(subscription)

    def retrieve_customer(self, customer_id: str) -> CustomerSnapshot:
        client = self._require_client()
        try:
            customer = client.v1.customers.retrieve(customer_id)
        except stripe.InvalidRequestError as exc:
            raise MalformedEventError(
                f"Customer {customer_id} could not be retrieved",
                detail={"customer_id": customer_id},
            ) from exc
        except stripe.StripeError as exc:
            logger.warning("Stripe customer lookup failed for %s: %s", customer_id, exc)
            raise ProviderAPIError(
                "Failed to retrieve customer from Stripe",
                detail={"customer_id": customer_id},
            ) from exc

        email = _field(customer, "email") or _field(_field(customer, "metadata"), "email")
        return CustomerSnapshot(customer_id=customer_id, email=email)


class StripeWebhookVerifier:
    """:class:`WebhookVerifier` checking the ``Stripe-Signature`` header."""

    def __init__(self, secret: Optional[str], *, tolerance: int = DEFAULT_WEBHOOK_TOLERANCE) -> None:
        self._secret = secret
        self._tolerance = tolerance

    def verify(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        if not signature:
            raise SignatureInvalidError("Missing Stripe-Signature header")
        if not self._secret:
            raise WebhookNotConfiguredError("Webhook signing secret is not configured")

        try:
            text = payload.decode("utf-8") if isinstance(payload, (bytes, bytearray)) else payload
        except UnicodeDecodeError as exc:
            raise SignatureInvalidError("Webhook body is not valid UTF-8") from exc
        try:
            stripe.WebhookSignature.verify_header(text, signature, self._secret, self._tolerance)
        except stripe.SignatureVerificationError as exc:
            raise SignatureInvalidError("Webhook signature verification failed") from exc

        try:
            body = json.loads(text)
        except ValueError as exc:
            raise MalformedEventError("Webhook body is not valid JSON") from exc
        if not isinstance(body, dict):
            raise MalformedEventError("Webhook body must be a JSON object")
        return body
