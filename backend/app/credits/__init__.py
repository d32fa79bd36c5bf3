"""Metered-credit ledger domain: plan catalog, carryover, reset schedule and reconciliation."""

from .carryover import (
    DEFAULT_CARRYOVER_GRACE,
    CarryoverResult,
    carry_pool,
    compute_carryover,
    latest_expiry,
)
from .catalog import DEFAULT_PLAN, DEFAULT_PRICE_TABLE, PlanCatalog, PlanDefinition, load_plan_catalog
from .exceptions import InsufficientCreditsError
from .models import (
    PLAN_TIER_NONE,
    BillingState,
    CreditPool,
    CreditPoolName,
    CustomerSnapshot,
    LedgerRecord,
    SubscriptionSnapshot,
    SubscriptionStatus,
    status_from_provider,
)
from .reconciliation import ReconciliationEngine, Transition, TransitionOutcome
from .schedule import (
    CreditResetSchedule,
    add_billing_cycle,
    initialize_credit_reset,
    reset_monthly_credits,
    should_reset_credits,
)
from .usage import available_credits, consume_credits

__all__ = [
    "DEFAULT_CARRYOVER_GRACE",
    "DEFAULT_PLAN",
    "DEFAULT_PRICE_TABLE",
    "PLAN_TIER_NONE",
    "BillingState",
    "CarryoverResult",
    "CreditPool",
    "CreditPoolName",
    "CreditResetSchedule",
    "CustomerSnapshot",
    "InsufficientCreditsError",
    "LedgerRecord",
    "PlanCatalog",
    "PlanDefinition",
    "ReconciliationEngine",
    "SubscriptionSnapshot",
    "SubscriptionStatus",
    "Transition",
    "TransitionOutcome",
    "add_billing_cycle",
    "available_credits",
    "carry_pool",
    "compute_carryover",
    "consume_credits",
    "initialize_credit_reset",
    "latest_expiry",
    "load_plan_catalog",
    "reset_monthly_credits",
    "should_reset_credits",
    "status_from_provider",
]
