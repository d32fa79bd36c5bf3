"""Billing package applying payment-provider webhooks to credit ledgers."""

from .accounts import CreditAccountService
from .config import BillingConfig, load_billing_config
from .events import decode_webhook_event
from .exceptions import (
    BillingWebhookError,
    MalformedEventError,
    PersistenceError,
    ProviderAPIError,
    SignatureInvalidError,
    UserNotFoundError,
    WebhookNotConfiguredError,
)
from .memory import InMemoryLedgerRepository
from .models import (
    BillingAuditEvent,
    BillingWebhookEvent,
    CheckoutCompleted,
    InvoicePaid,
    InvoicePaymentFailed,
    SubscriptionCreated,
    SubscriptionDeleted,
    SubscriptionUpdated,
    WebhookEventKind,
    WebhookOutcome,
    WebhookResult,
)
from .provider import PaymentProvider, StripePaymentProvider, StripeWebhookVerifier, WebhookVerifier
from .repository import LedgerRepository, LedgerTransaction, PostgresLedgerRepository
from .service import BillingAlerter, BillingEventLogger, BillingWebhookService

__all__ = [
    "BillingAlerter",
    "BillingAuditEvent",
    "BillingConfig",
    "BillingEventLogger",
    "BillingWebhookError",
    "BillingWebhookEvent",
    "BillingWebhookService",
    "CheckoutCompleted",
    "CreditAccountService",
    "InMemoryLedgerRepository",
    "InvoicePaid",
    "InvoicePaymentFailed",
    "LedgerRepository",
    "LedgerTransaction",
    "MalformedEventError",
    "PaymentProvider",
    "PersistenceError",
    "PostgresLedgerRepository",
    "ProviderAPIError",
    "SignatureInvalidError",
    "StripePaymentProvider",
    "StripeWebhookVerifier",
    "SubscriptionCreated",
    "SubscriptionDeleted",
    "SubscriptionUpdated",
    "UserNotFoundError",
    "WebhookEventKind",
    "WebhookNotConfiguredError",
    "WebhookOutcome",
    "WebhookResult",
    "WebhookVerifier",
    "decode_webhook_event",
    "load_billing_config",
]
