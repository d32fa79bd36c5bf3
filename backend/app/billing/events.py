"""Decoding verified provider payloads into typed billing events."""
from __future__ import annotations

from typing import Any, Callable, Dict, Mapping, Optional

from pydantic import ValidationError

from .exceptions import MalformedEventError
from .models import (
    BillingWebhookEvent,
    CheckoutCompleted,
    InvoicePaid,
    InvoicePaymentFailed,
    SubscriptionCreated,
    SubscriptionDeleted,
    SubscriptionUpdated,
)


def _object_id(value: object) -> Optional[str]:
    """Return the id of a field that may be a bare id or an expanded object."""

    if isinstance(value, str):
        return value or None
    if isinstance(value, Mapping):
        nested = value.get("id")
        return nested if isinstance(nested, str) and nested else None
    return None


def _mapping(value: object) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _invoice_subscription_id(invoice: Mapping[str, Any]) -> Optional[str]:
    subscription_id = _object_id(invoice.get("subscription"))
    if subscription_id:
        return subscription_id
    # Newer API versions move the reference under ``parent.subscription_details``.
    details = _mapping(_mapping(invoice.get("parent")).get("subscription_details"))
    return _object_id(details.get("subscription"))


def _decode_checkout(event_id: str, session: Mapping[str, Any]) -> Optional[BillingWebhookEvent]:
    if session.get("mode") not in (None, "subscription"):
        return None
    email = (
        _mapping(session.get("metadata")).get("email")
        or _mapping(session.get("customer_details")).get("email")
        or session.get("customer_email")
    )
    return CheckoutCompleted(
        event_id=event_id,
        email=email,
        customer_id=_object_id(session.get("customer")),
        subscription_id=_object_id(session.get("subscription")),
    )


def _decode_subscription_created(event_id: str, subscription: Mapping[str, Any]) -> BillingWebhookEvent:
    return SubscriptionCreated(
        event_id=event_id,
        subscription_id=subscription.get("id"),
        customer_id=_object_id(subscription.get("customer")),
    )


def _decode_subscription_updated(event_id: str, subscription: Mapping[str, Any]) -> BillingWebhookEvent:
    return SubscriptionUpdated(event_id=event_id, subscription_id=subscription.get("id"))


def _decode_subscription_deleted(event_id: str, subscription: Mapping[str, Any]) -> BillingWebhookEvent:
    return SubscriptionDeleted(event_id=event_id, subscription_id=subscription.get("id"))


def _decode_invoice_paid(event_id: str, invoice: Mapping[str, Any]) -> Optional[BillingWebhookEvent]:
    subscription_id = _invoice_subscription_id(invoice)
    if subscription_id is None:
        return None
    return InvoicePaid(event_id=event_id, subscription_id=subscription_id, invoice_id=_object_id(invoice.get("id")))


def _decode_invoice_failed(event_id: str, invoice: Mapping[str, Any]) -> Optional[BillingWebhookEvent]:
    subscription_id = _invoice_subscription_id(invoice)
    if subscription_id is None:
        return None
    return InvoicePaymentFailed(
        event_id=event_id,
        subscription_id=subscription_id,
        invoice_id=_object_id(invoice.get("id")),
    )


_Decoder = Callable[[str, Mapping[str, Any]], Optional[BillingWebhookEvent]]

_DECODERS: Dict[str, _Decoder] = {
    "checkout.session.completed": _decode_checkout,
    "customer.subscription.created": _decode_subscription_created,
    "customer.subscription.updated": _decode_subscription_updated,
    "customer.subscription.deleted": _decode_subscription_deleted,
    "invoice.paid": _decode_invoice_paid,
    "invoice.payment_succeeded": _decode_invoice_paid,
    "invoice.payment_failed": _decode_invoice_failed,
}


def decode_webhook_event(raw: object) -> Optional[BillingWebhookEvent]:
    """Decode a verified webhook body into a typed event.

    Returns ``None`` for event types, or payload variants (one-off invoices,
    non-subscription checkouts), that the ledger does not track. Raises
    :class:`MalformedEventError` when a tracked event lacks required fields.
    """

    if not isinstance(raw, Mapping):
        raise MalformedEventError("Webhook body must be a JSON object")

    event_id = raw.get("id")
    event_type = raw.get("type")
    if not isinstance(event_id, str) or not event_id or not isinstance(event_type, str):
        raise MalformedEventError("Webhook body is missing id or type")

    decoder = _DECODERS.get(event_type)
    if decoder is None:
        return None

    data_object = _mapping(raw.get("data")).get("object")
    if not isinstance(data_object, Mapping):
        raise MalformedEventError(f"{event_type} event {event_id} has no data object")

    try:
        return decoder(event_id, data_object)
    except ValidationError as exc:
        missing = ", ".join(str(error["loc"][0]) for error in exc.errors() if error.get("loc"))
        raise MalformedEventError(
            f"{event_type} event {event_id} is missing required fields",
            detail={"fields": missing},
        ) from exc
