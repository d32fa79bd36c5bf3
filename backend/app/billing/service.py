"""Core service applying provider webhooks to credit ledgers."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Protocol

from ..credits.models import LedgerRecord, SubscriptionSnapshot
from ..credits.reconciliation import ReconciliationEngine, Transition
from .events import decode_webhook_event
from .exceptions import (
    BillingWebhookError,
    MalformedEventError,
    PersistenceError,
    ProviderAPIError,
    UserNotFoundError,
)
from .models import (
    BillingAuditEvent,
    BillingWebhookEvent,
    CheckoutCompleted,
    InvoicePaid,
    InvoicePaymentFailed,
    SubscriptionCreated,
    SubscriptionDeleted,
    SubscriptionUpdated,
    WebhookOutcome,
    WebhookResult,
)
from .provider import PaymentProvider, WebhookVerifier
from .repository import LedgerRepository, LedgerTransaction


class BillingEventLogger(Protocol):
    """Captures structured billing audit events."""

    def log(self, event: BillingAuditEvent) -> None:
        ...


class BillingAlerter(Protocol):
    """Surfaces webhook failures that need operator attention."""

    def notify_provider_failure(self, event_type: str, event_id: str, error: BillingWebhookError) -> None:
        ...

    def notify_persistence_failure(self, event_type: str, event_id: str, error: BillingWebhookError) -> None:
        ...

    def notify_skipped_event(
        self,
        event_type: Optional[str],
        event_id: Optional[str],
        error: BillingWebhookError,
    ) -> None:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class _ProviderContext:
    snapshot: Optional[SubscriptionSnapshot] = None
    email: Optional[str] = None


_STARTED_EVENTS = (CheckoutCompleted, SubscriptionCreated)


@dataclass(slots=True)
class BillingWebhookService:
    """Verifies, decodes and applies billing webhooks exactly once per event id."""

    repository: LedgerRepository
    provider: PaymentProvider
    verifier: WebhookVerifier
    engine: ReconciliationEngine
    event_logger: BillingEventLogger
    alerter: BillingAlerter
    clock: Callable[[], datetime] = _utcnow

    def handle_webhook(self, payload: bytes, signature: Optional[str]) -> WebhookResult:
        """Authenticate a raw delivery and process it.

        Signature failures propagate; everything after authentication either
        returns a :class:`WebhookResult` or raises a retryable error.
        """

        try:
            body = self.verifier.verify(payload, signature)
        except MalformedEventError as exc:
            return self._skip(None, None, exc)

        try:
            event = decode_webhook_event(body)
        except MalformedEventError as exc:
            return self._skip(_text(body, "type"), _text(body, "id"), exc)

        if event is None:
            return WebhookResult(
                outcome=WebhookOutcome.IGNORED,
                event_id=_text(body, "id"),
                event_type=_text(body, "type"),
            )
        return self.process_event(event)

    def process_event(self, event: BillingWebhookEvent) -> WebhookResult:
        event_type = event.kind.value
        try:
            return self._process(event)
        except (MalformedEventError, UserNotFoundError) as exc:
            return self._skip(event_type, event.event_id, exc)
        except ProviderAPIError as exc:
            self.alerter.notify_provider_failure(event_type, event.event_id, exc)
            raise
        except PersistenceError as exc:
            self.alerter.notify_persistence_failure(event_type, event.event_id, exc)
            raise

    def _process(self, event: BillingWebhookEvent) -> WebhookResult:
        # Provider lookups run before any row lock is taken.
        context = self._fetch_context(event)
        now = self.clock()

        with self.repository.transaction() as tx:
            if not tx.claim_event(event.event_id, event.kind.value):
                return WebhookResult(
                    outcome=WebhookOutcome.DUPLICATE,
                    event_id=event.event_id,
                    event_type=event.kind.value,
                )
            ledger = self._lock_ledger(tx, event, context)
            transition = self._apply(event, ledger, context, now)
            if transition.changed:
                tx.save_ledger(transition.ledger)

        if transition.changed:
            self._log_transition(event, transition, now)

        return WebhookResult(
            outcome=WebhookOutcome.PROCESSED if transition.changed else WebhookOutcome.UNCHANGED,
            event_id=event.event_id,
            event_type=event.kind.value,
            user_id=transition.ledger.user_id,
            transition=transition.outcome,
        )

    def _fetch_context(self, event: BillingWebhookEvent) -> _ProviderContext:
        if isinstance(event, CheckoutCompleted):
            snapshot = self.provider.retrieve_subscription(event.subscription_id)
            if not snapshot.customer_id and event.customer_id:
                snapshot = snapshot.model_copy(update={"customer_id": event.customer_id})
            return _ProviderContext(snapshot=snapshot, email=event.email)

        if isinstance(event, SubscriptionCreated):
            snapshot = self.provider.retrieve_subscription(event.subscription_id)
            customer = self.provider.retrieve_customer(event.customer_id)
            if not customer.email:
                raise UserNotFoundError(
                    f"Customer {event.customer_id} has no email address",
                    detail={"customer_id": event.customer_id},
                )
            return _ProviderContext(snapshot=snapshot, email=customer.email)

        if isinstance(event, (SubscriptionUpdated, InvoicePaid)):
            return _ProviderContext(snapshot=self.provider.retrieve_subscription(event.subscription_id))

        return _ProviderContext()

    @staticmethod
    def _lock_ledger(
        tx: LedgerTransaction,
        event: BillingWebhookEvent,
        context: _ProviderContext,
    ) -> LedgerRecord:
        if isinstance(event, _STARTED_EVENTS):
            user_id = tx.find_user_id_by_email(context.email or "")
            if user_id is None:
                raise UserNotFoundError(
                    f"No user matches the email on {event.kind.value} event {event.event_id}",
                    detail={"subscription_id": event.subscription_id},
                )
            ledger = tx.lock_ledger(user_id, create=True)
        else:
            ledger = tx.lock_ledger_by_subscription(event.subscription_id)

        if ledger is None:
            raise UserNotFoundError(
                f"No ledger references subscription {event.subscription_id}",
                detail={"subscription_id": event.subscription_id},
            )
        return ledger

    def _apply(
        self,
        event: BillingWebhookEvent,
        ledger: LedgerRecord,
        context: _ProviderContext,
        now: datetime,
    ) -> Transition:
        if isinstance(event, _STARTED_EVENTS):
            return self.engine.subscription_started(ledger, context.snapshot, now=now)
        if isinstance(event, SubscriptionUpdated):
            return self.engine.subscription_updated(ledger, context.snapshot, now=now)
        if isinstance(event, InvoicePaid):
            return self.engine.invoice_paid(ledger, context.snapshot, now=now)
        if isinstance(event, SubscriptionDeleted):
            return self.engine.subscription_canceled(ledger, now=now)
        if isinstance(event, InvoicePaymentFailed):
            return self.engine.payment_failed(ledger, now=now)
        raise MalformedEventError(f"Unsupported event kind {event.kind.value}")

    def _log_transition(self, event: BillingWebhookEvent, transition: Transition, now: datetime) -> None:
        ledger = transition.ledger
        self.event_logger.log(
            BillingAuditEvent(
                event_type=transition.outcome,
                user_id=ledger.user_id,
                subscription_id=ledger.billing.subscription_id,
                provider_event_id=event.event_id,
                metadata={
                    "webhook_type": event.kind.value,
                    "plan_tier": ledger.billing.plan_tier,
                    "status": ledger.billing.status.value,
                },
                occurred_at=now,
            )
        )

    def _skip(
        self,
        event_type: Optional[str],
        event_id: Optional[str],
        error: BillingWebhookError,
    ) -> WebhookResult:
        self.alerter.notify_skipped_event(event_type, event_id, error)
        return WebhookResult(
            outcome=WebhookOutcome.SKIPPED,
            event_id=event_id,
            event_type=event_type,
            reason=error.code,
        )


def _text(body: Mapping[str, Any], key: str) -> Optional[str]:
    value = body.get(key)
    return value if isinstance(value, str) else None
