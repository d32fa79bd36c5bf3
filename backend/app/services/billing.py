"""Application wiring for the billing services."""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

from ..billing import (
    BillingAlerter,
    BillingAuditEvent,
    BillingConfig,
    BillingEventLogger,
    BillingWebhookError,
    BillingWebhookService,
    CreditAccountService,
    InMemoryLedgerRepository,
    LedgerRepository,
    PostgresLedgerRepository,
    StripePaymentProvider,
    StripeWebhookVerifier,
    load_billing_config,
)
from ..credits import PlanCatalog, ReconciliationEngine, load_plan_catalog


logger = logging.getLogger("billing")


class LoggingBillingEventLogger(BillingEventLogger):
    """Simple event logger forwarding billing audit events to logging."""

    def log(self, event: BillingAuditEvent) -> None:
        logger.info(
            "Billing event %s user=%s subscription=%s provider_event=%s metadata=%s",
            event.event_type.value,
            event.user_id,
            event.subscription_id,
            event.provider_event_id,
            event.metadata,
            extra={"user_id": event.user_id, "provider_event_id": event.provider_event_id},
        )


class LoggingBillingAlerter(BillingAlerter):
    """Alerter that records webhook failures to the application logger."""

    def notify_provider_failure(self, event_type: str, event_id: str, error: BillingWebhookError) -> None:
        logger.error(
            "Payment provider call failed while handling %s %s: %s",
            event_type,
            event_id,
            error.message,
            extra={"provider_event_id": event_id, "error_code": error.code},
        )

    def notify_persistence_failure(self, event_type: str, event_id: str, error: BillingWebhookError) -> None:
        logger.error(
            "Ledger write failed while handling %s %s: %s",
            event_type,
            event_id,
            error.message,
            extra={"provider_event_id": event_id, "error_code": error.code},
        )

    def notify_skipped_event(
        self,
        event_type: Optional[str],
        event_id: Optional[str],
        error: BillingWebhookError,
    ) -> None:
        logger.warning(
            "Skipping billing webhook %s %s (%s): %s",
            event_type,
            event_id,
            error.code,
            error.message,
            extra={"provider_event_id": event_id, "error_code": error.code},
        )


@lru_cache(maxsize=1)
def get_billing_config() -> BillingConfig:
    return load_billing_config()


@lru_cache(maxsize=1)
def get_plan_catalog() -> PlanCatalog:
    return load_plan_catalog(get_billing_config().plan_catalog_path)


@lru_cache(maxsize=1)
def get_ledger_repository() -> LedgerRepository:
    config = get_billing_config()
    if config.ledger_backend == "memory":
        logger.warning("Using in-memory credit ledger; balances are lost on restart")
        return InMemoryLedgerRepository()
    return PostgresLedgerRepository()


@lru_cache(maxsize=1)
def get_billing_service() -> BillingWebhookService:
    config = get_billing_config()
    engine = ReconciliationEngine(catalog=get_plan_catalog(), carryover_grace=config.carryover_grace)
    provider = StripePaymentProvider(
        config.stripe_secret_key,
        timeout=config.api_timeout,
        max_network_retries=config.max_network_retries,
    )
    verifier = StripeWebhookVerifier(config.webhook_secret, tolerance=config.webhook_tolerance)
    service = BillingWebhookService(
        repository=get_ledger_repository(),
        provider=provider,
        verifier=verifier,
        engine=engine,
        event_logger=LoggingBillingEventLogger(),
        alerter=LoggingBillingAlerter(),
    )
    return service


@lru_cache(maxsize=1)
def get_credit_account_service() -> CreditAccountService:
    return CreditAccountService(repository=get_ledger_repository())


__all__ = [
    "LoggingBillingAlerter",
    "LoggingBillingEventLogger",
    "get_billing_config",
    "get_billing_service",
    "get_credit_account_service",
    "get_ledger_repository",
    "get_plan_catalog",
]
