"""Typed webhook events and processing results for the billing subsystem."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..credits.reconciliation import TransitionOutcome


class WebhookEventKind(str, Enum):
    """Webhook event types that the ledger reacts to."""

    CHECKOUT_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAID = "invoice.paid"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


class _WebhookEventBase(BaseModel):
    event_id: str = Field(min_length=1)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class CheckoutCompleted(_WebhookEventBase):
    """Checkout finished for a subscription; the user is identified by email."""

    kind: Literal[WebhookEventKind.CHECKOUT_COMPLETED] = WebhookEventKind.CHECKOUT_COMPLETED
    email: str = Field(min_length=1)
    customer_id: Optional[str] = None
    subscription_id: str = Field(min_length=1)


class SubscriptionCreated(_WebhookEventBase):
    """Subscription created; the user is identified through the customer's email."""

    kind: Literal[WebhookEventKind.SUBSCRIPTION_CREATED] = WebhookEventKind.SUBSCRIPTION_CREATED
    subscription_id: str = Field(min_length=1)
    customer_id: str = Field(min_length=1)


class SubscriptionUpdated(_WebhookEventBase):
    kind: Literal[WebhookEventKind.SUBSCRIPTION_UPDATED] = WebhookEventKind.SUBSCRIPTION_UPDATED
    subscription_id: str = Field(min_length=1)


class SubscriptionDeleted(_WebhookEventBase):
    kind: Literal[WebhookEventKind.SUBSCRIPTION_DELETED] = WebhookEventKind.SUBSCRIPTION_DELETED
    subscription_id: str = Field(min_length=1)


class InvoicePaid(_WebhookEventBase):
    kind: Literal[WebhookEventKind.INVOICE_PAID] = WebhookEventKind.INVOICE_PAID
    subscription_id: str = Field(min_length=1)
    invoice_id: Optional[str] = None


class InvoicePaymentFailed(_WebhookEventBase):
    kind: Literal[WebhookEventKind.INVOICE_PAYMENT_FAILED] = WebhookEventKind.INVOICE_PAYMENT_FAILED
    subscription_id: str = Field(min_length=1)
    invoice_id: Optional[str] = None


BillingWebhookEvent = Union[
    CheckoutCompleted,
    SubscriptionCreated,
    SubscriptionUpdated,
    SubscriptionDeleted,
    InvoicePaid,
    InvoicePaymentFailed,
]


class WebhookOutcome(str, Enum):
    """How a webhook delivery was acknowledged."""

    PROCESSED = "processed"
    UNCHANGED = "unchanged"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    SKIPPED = "skipped"


class WebhookResult(BaseModel):
    """Outcome of handling one webhook delivery."""

    outcome: WebhookOutcome
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    user_id: Optional[str] = None
    transition: Optional[TransitionOutcome] = None
    reason: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class BillingAuditEvent(BaseModel):
    """Structured audit record emitted after a ledger transition commits."""

    event_type: TransitionOutcome
    user_id: str
    subscription_id: Optional[str] = None
    provider_event_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)
