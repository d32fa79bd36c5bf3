"""API schemas for billing endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..billing import WebhookOutcome, WebhookResult
from ..credits import CreditPool, CreditPoolName, LedgerRecord, TransitionOutcome, latest_expiry


class WebhookAckResponse(BaseModel):
    received: bool = True
    outcome: WebhookOutcome
    event_id: Optional[str] = Field(alias="eventId", default=None)
    transition: Optional[TransitionOutcome] = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: WebhookResult) -> "WebhookAckResponse":
        return cls(outcome=result.outcome, event_id=result.event_id, transition=result.transition)


class CreditPoolSummary(BaseModel):
    allowed: int
    used: int
    carryover: int
    carryover_expiry: Optional[datetime] = Field(alias="carryoverExpiry", default=None)
    available: int

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_pool(cls, pool: CreditPool, now: datetime) -> "CreditPoolSummary":
        active = pool.carryover_active(now)
        return cls(
            allowed=pool.allowed,
            used=pool.used,
            carryover=pool.carryover if active else 0,
            carryover_expiry=pool.carryover_expiry if active else None,
            available=pool.available(now),
        )


class CreditSummaryResponse(BaseModel):
    plan_tier: str = Field(alias="planTier")
    status: str
    ugc: CreditPoolSummary
    faceless: CreditPoolSummary
    carryover_expiry: Optional[datetime] = Field(alias="carryoverExpiry", default=None)
    next_reset: Optional[datetime] = Field(alias="nextReset", default=None)
    period_end: Optional[datetime] = Field(alias="periodEnd", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_ledger(cls, ledger: LedgerRecord, now: datetime) -> "CreditSummaryResponse":
        ugc = CreditPoolSummary.from_pool(ledger.ugc, now)
        faceless = CreditPoolSummary.from_pool(ledger.faceless, now)
        return cls(
            plan_tier=ledger.billing.plan_tier,
            status=ledger.billing.status.value,
            ugc=ugc,
            faceless=faceless,
            carryover_expiry=latest_expiry(ugc.carryover_expiry, faceless.carryover_expiry),
            next_reset=ledger.next_reset,
            period_end=ledger.billing.period_end,
        )


class ConsumeCreditsRequest(BaseModel):
    pool: CreditPoolName
    amount: int = Field(ge=1)

    model_config = ConfigDict(populate_by_name=True)
