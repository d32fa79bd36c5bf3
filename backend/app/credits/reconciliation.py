"""State machine turning billing events into the next ledger state."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from .carryover import DEFAULT_CARRYOVER_GRACE, carry_pool
from .catalog import PlanCatalog, PlanDefinition
from .models import (
    PLAN_TIER_NONE,
    BillingState,
    CreditPool,
    CreditPoolName,
    LedgerRecord,
    SubscriptionSnapshot,
    SubscriptionStatus,
    status_from_provider,
)
from .schedule import (
    add_billing_cycle,
    initialize_credit_reset,
    reset_monthly_credits,
    should_reset_credits,
)


class TransitionOutcome(str, Enum):
    """What a reconciliation step did to the ledger."""

    INITIALIZED = "initialized"
    PLAN_CHANGED = "plan_changed"
    SUBSCRIPTION_REPLACED = "subscription_replaced"
    RENEWED = "renewed"
    CANCELED = "canceled"
    PAYMENT_FAILED = "payment_failed"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class Transition:
    """Result of applying one event to a ledger snapshot."""

    outcome: TransitionOutcome
    ledger: LedgerRecord

    @property
    def changed(self) -> bool:
        return self.outcome != TransitionOutcome.UNCHANGED


def _not_earlier(previous: Optional[datetime], proposed: datetime) -> datetime:
    if previous is not None and previous > proposed:
        return previous
    return proposed


@dataclass(slots=True)
class ReconciliationEngine:
    """Applies subscription and invoice events to a ledger.

    Every method is pure: it receives the locked ledger snapshot and returns a
    :class:`Transition`. Replays of an already-applied state come back as
    ``UNCHANGED`` so callers can skip the write.
    """

    catalog: PlanCatalog
    carryover_grace: timedelta = DEFAULT_CARRYOVER_GRACE

    def subscription_started(
        self,
        ledger: LedgerRecord,
        snapshot: SubscriptionSnapshot,
        *,
        now: datetime,
    ) -> Transition:
        """Handle a new subscription or a checkout that replaces the current plan."""

        billing = ledger.billing
        if snapshot.has_ended:
            return self._unchanged(ledger)

        plan = self.catalog.resolve_tier(snapshot.price_id)
        if billing.subscription_id == snapshot.subscription_id:
            if billing.status == SubscriptionStatus.CANCELED or billing.plan_tier == plan.tier:
                return self._unchanged(ledger)
            return self._change_plan(ledger, snapshot, plan, now=now, update_period=True)

        if not ledger.has_subscription or ledger.next_reset is None:
            return self._initialize(ledger, snapshot, plan, now=now)

        # A canceled ledger keeps its subscription id and sits on the "none"
        # tier, so resubscribing is a plan change: usage and schedule survive.
        if billing.plan_tier != plan.tier:
            return self._change_plan(ledger, snapshot, plan, now=now, update_period=True)

        return self._replace_subscription(ledger, snapshot, plan, now=now)

    def subscription_updated(
        self,
        ledger: LedgerRecord,
        snapshot: SubscriptionSnapshot,
        *,
        now: datetime,
    ) -> Transition:
        """Handle an in-place price change on the current subscription.

        Period bounds stay untouched; the renewal path compares them to detect
        replayed invoices.
        """

        if ledger.billing.status == SubscriptionStatus.CANCELED or snapshot.has_ended:
            return self._unchanged(ledger)

        plan = self.catalog.resolve_tier(snapshot.price_id)
        if plan.tier == ledger.billing.plan_tier:
            return self._unchanged(ledger)
        return self._change_plan(ledger, snapshot, plan, now=now, update_period=False)

    def invoice_paid(
        self,
        ledger: LedgerRecord,
        snapshot: SubscriptionSnapshot,
        *,
        now: datetime,
    ) -> Transition:
        """Handle a paid renewal invoice: reset when due and refresh allowances."""

        billing = ledger.billing
        if billing.status == SubscriptionStatus.CANCELED or snapshot.has_ended:
            return self._unchanged(ledger)

        plan = self.catalog.resolve_tier(snapshot.price_id)
        if (
            billing.status == SubscriptionStatus.ACTIVE
            and billing.period_start == snapshot.period_start
            and billing.period_end == snapshot.period_end
            and billing.plan_tier == plan.tier
        ):
            return self._unchanged(ledger)

        updated = ledger
        if should_reset_credits(ledger, now):
            updated = reset_monthly_credits(ledger, now=now)

        updated = updated.model_copy(
            update={
                "ugc": updated.ugc.model_copy(update={"allowed": plan.allowed_ugc}),
                "faceless": updated.faceless.model_copy(update={"allowed": plan.allowed_faceless}),
                "billing": billing.model_copy(
                    update={
                        "customer_id": snapshot.customer_id or billing.customer_id,
                        "price_id": snapshot.price_id or billing.price_id,
                        "status": SubscriptionStatus.ACTIVE,
                        "plan_tier": plan.tier,
                        "period_start": snapshot.period_start or billing.period_start,
                        "period_end": snapshot.period_end or billing.period_end,
                    }
                ),
            }
        )
        return self._stamp(TransitionOutcome.RENEWED, updated, now)

    def subscription_canceled(self, ledger: LedgerRecord, *, now: datetime) -> Transition:
        """Zero allowances and carryover; usage stays for the audit trail."""

        if ledger.billing.status == SubscriptionStatus.CANCELED:
            return self._unchanged(ledger)

        cleared = {"allowed": 0, "carryover": 0, "carryover_expiry": None}
        updated = ledger.model_copy(
            update={
                "billing": ledger.billing.model_copy(
                    update={"status": SubscriptionStatus.CANCELED, "plan_tier": PLAN_TIER_NONE}
                ),
                "ugc": ledger.ugc.model_copy(update=cleared),
                "faceless": ledger.faceless.model_copy(update=cleared),
            }
        )
        return self._stamp(TransitionOutcome.CANCELED, updated, now)

    def payment_failed(self, ledger: LedgerRecord, *, now: datetime) -> Transition:
        if ledger.billing.status in {SubscriptionStatus.PAST_DUE, SubscriptionStatus.CANCELED}:
            return self._unchanged(ledger)

        updated = ledger.model_copy(
            update={"billing": ledger.billing.model_copy(update={"status": SubscriptionStatus.PAST_DUE})}
        )
        return self._stamp(TransitionOutcome.PAYMENT_FAILED, updated, now)

    def _initialize(
        self,
        ledger: LedgerRecord,
        snapshot: SubscriptionSnapshot,
        plan: PlanDefinition,
        *,
        now: datetime,
    ) -> Transition:
        period_start = snapshot.period_start or now
        if ledger.reset_day is None:
            schedule = initialize_credit_reset(period_start)
            reset_day, next_reset = schedule.reset_day, schedule.next_reset
        else:
            reset_day = ledger.reset_day
            next_reset = add_billing_cycle(period_start, reset_day)

        updated = ledger.model_copy(
            update={
                "billing": self._billing_for(ledger.billing, snapshot, plan, update_period=True),
                "ugc": CreditPool(allowed=plan.allowed_ugc),
                "faceless": CreditPool(allowed=plan.allowed_faceless),
                "reset_day": reset_day,
                "next_reset": _not_earlier(ledger.next_reset, next_reset),
            }
        )
        return self._stamp(TransitionOutcome.INITIALIZED, updated, now)

    def _change_plan(
        self,
        ledger: LedgerRecord,
        snapshot: SubscriptionSnapshot,
        plan: PlanDefinition,
        *,
        now: datetime,
        update_period: bool,
    ) -> Transition:
        updated = ledger.model_copy(
            update={"billing": self._billing_for(ledger.billing, snapshot, plan, update_period=update_period)}
        )
        for name in CreditPoolName:
            carried = carry_pool(ledger.pool(name), now=now, grace=self.carryover_grace)
            updated = updated.with_pool(name, carried.model_copy(update={"allowed": plan.allowance(name)}))
        return self._stamp(TransitionOutcome.PLAN_CHANGED, updated, now)

    def _replace_subscription(
        self,
        ledger: LedgerRecord,
        snapshot: SubscriptionSnapshot,
        plan: PlanDefinition,
        *,
        now: datetime,
    ) -> Transition:
        updated = ledger.model_copy(
            update={"billing": self._billing_for(ledger.billing, snapshot, plan, update_period=True)}
        )
        return self._stamp(TransitionOutcome.SUBSCRIPTION_REPLACED, updated, now)

    @staticmethod
    def _billing_for(
        billing: BillingState,
        snapshot: SubscriptionSnapshot,
        plan: PlanDefinition,
        *,
        update_period: bool,
    ) -> BillingState:
        update = {
            "customer_id": snapshot.customer_id or billing.customer_id,
            "subscription_id": snapshot.subscription_id,
            "price_id": snapshot.price_id,
            "status": status_from_provider(snapshot.status),
            "plan_tier": plan.tier,
        }
        if update_period:
            update["period_start"] = snapshot.period_start
            update["period_end"] = snapshot.period_end
        return billing.model_copy(update=update)

    @staticmethod
    def _stamp(outcome: TransitionOutcome, ledger: LedgerRecord, now: datetime) -> Transition:
        return Transition(outcome=outcome, ledger=ledger.model_copy(update={"updated_at": now}))

    @staticmethod
    def _unchanged(ledger: LedgerRecord) -> Transition:
        return Transition(outcome=TransitionOutcome.UNCHANGED, ledger=ledger)
