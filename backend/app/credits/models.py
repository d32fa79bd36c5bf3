"""Domain models for the metered-credit ledger."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

PLAN_TIER_NONE = "none"


class SubscriptionStatus(str, Enum):
    """Subscription states tracked on a ledger."""

    NONE = "none"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class CreditPoolName(str, Enum):
    """Independently metered monthly credit pools."""

    UGC = "ugc"
    FACELESS = "faceless"


_ACTIVE_PROVIDER_STATUSES = {"active", "trialing"}
_PAST_DUE_PROVIDER_STATUSES = {"past_due", "unpaid"}
_ENDED_PROVIDER_STATUSES = {"canceled", "incomplete_expired"}


def status_from_provider(raw_status: Optional[str]) -> SubscriptionStatus:
    """Map a raw provider subscription status onto the ledger's closed set.

    Anything the ledger does not model explicitly (``incomplete``, ``paused``,
    missing values) is treated as active, matching a freshly created
    subscription.
    """

    value = (raw_status or "").strip().lower()
    if value in _PAST_DUE_PROVIDER_STATUSES:
        return SubscriptionStatus.PAST_DUE
    if value in _ENDED_PROVIDER_STATUSES:
        return SubscriptionStatus.CANCELED
    return SubscriptionStatus.ACTIVE


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CreditPool(BaseModel):
    """Allowance, usage and carryover for a single credit pool."""

    allowed: int = Field(default=0, ge=0)
    used: int = Field(default=0, ge=0)
    carryover: int = Field(default=0, ge=0)
    carryover_expiry: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @model_validator(mode="after")
    def _carryover_requires_expiry(self) -> "CreditPool":
        if (self.carryover == 0) != (self.carryover_expiry is None):
            raise ValueError("carryover and carryover_expiry must be set together")
        return self

    def carryover_active(self, now: datetime) -> bool:
        """Return ``True`` while carried-over credits are still spendable."""
        return (
            self.carryover > 0
            and self.carryover_expiry is not None
            and self.carryover_expiry > now
        )

    def remaining_allowance(self) -> int:
        return max(0, self.allowed - self.used)

    def available(self, now: datetime) -> int:
        """Credits spendable right now, never negative."""
        carried = self.carryover if self.carryover_active(now) else 0
        return self.remaining_allowance() + carried


class BillingState(BaseModel):
    """Provider-side identifiers and subscription state mirrored on the ledger."""

    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    price_id: Optional[str] = None
    status: SubscriptionStatus = SubscriptionStatus.NONE
    plan_tier: str = PLAN_TIER_NONE
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class LedgerRecord(BaseModel):
    """Per-user credit ledger row."""

    user_id: str
    billing: BillingState = Field(default_factory=BillingState)
    ugc: CreditPool = Field(default_factory=CreditPool)
    faceless: CreditPool = Field(default_factory=CreditPool)
    reset_day: Optional[int] = Field(default=None, ge=1, le=31)
    next_reset: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def pool(self, name: CreditPoolName) -> CreditPool:
        return self.ugc if name == CreditPoolName.UGC else self.faceless

    def with_pool(self, name: CreditPoolName, pool: CreditPool) -> "LedgerRecord":
        return self.model_copy(update={name.value: pool})

    @property
    def has_subscription(self) -> bool:
        return self.billing.subscription_id is not None


class SubscriptionSnapshot(BaseModel):
    """Fields the engine reads from a provider subscription object."""

    subscription_id: str = Field(min_length=1)
    customer_id: Optional[str] = None
    price_id: Optional[str] = None
    status: str = "active"
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("period_start", "period_end")
    @classmethod
    def _ensure_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def has_ended(self) -> bool:
        return status_from_provider(self.status) == SubscriptionStatus.CANCELED


class CustomerSnapshot(BaseModel):
    """Fields the dispatcher reads from a provider customer object."""

    customer_id: str
    email: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)
