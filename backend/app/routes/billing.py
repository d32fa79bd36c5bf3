"""API routes exposing billing webhooks and credit balances."""
from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Cookie, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool

from ..billing import BillingWebhookError, WebhookOutcome
from ..credits import InsufficientCreditsError
from ..schemas.billing import ConsumeCreditsRequest, CreditSummaryResponse, WebhookAckResponse
from ..services.billing import get_billing_service, get_credit_account_service

try:  # pragma: no cover - resolve context helper when imported from FastAPI app
    from backend import app_context
except ModuleNotFoundError as exc:  # pragma: no cover
    if exc.name != "backend":
        raise
    import app_context  # type: ignore[no-redef]


_SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")


def _get_current_user(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
) -> Any:
    return app_context.get_current_user(session_token=session_token)


router = APIRouter(prefix="/api/billing", tags=["billing"])


@router.post("/webhook", response_model=WebhookAckResponse)
async def receive_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
) -> WebhookAckResponse:
    payload = await request.body()
    service = get_billing_service()
    try:
        result = await run_in_threadpool(service.handle_webhook, payload, stripe_signature)
    except BillingWebhookError as exc:
        if exc.acknowledge:
            return WebhookAckResponse(outcome=WebhookOutcome.SKIPPED)
        raise exc.to_http_exception() from exc
    return WebhookAckResponse.from_result(result)


@router.get("/credits", response_model=CreditSummaryResponse)
def get_credit_summary(*, current_user=Depends(_get_current_user)) -> CreditSummaryResponse:
    service = get_credit_account_service()
    try:
        ledger = service.summary(str(current_user.id))
    except BillingWebhookError as exc:
        raise exc.to_http_exception() from exc
    return CreditSummaryResponse.from_ledger(ledger, datetime.now(timezone.utc))


@router.post("/credits/consume", response_model=CreditSummaryResponse)
def consume_credits(
    payload: ConsumeCreditsRequest,
    *,
    current_user=Depends(_get_current_user),
) -> CreditSummaryResponse:
    service = get_credit_account_service()
    try:
        ledger = service.consume(str(current_user.id), payload.pool, payload.amount)
    except InsufficientCreditsError as exc:
        raise exc.to_http_exception() from exc
    except BillingWebhookError as exc:
        raise exc.to_http_exception() from exc
    return CreditSummaryResponse.from_ledger(ledger, datetime.now(timezone.utc))
