"""Error taxonomy for billing webhook processing."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


@dataclass
class BillingWebhookError(Exception):
    """Base error carrying the HTTP treatment of a failed delivery.

    ``acknowledge`` marks errors that must still be answered with a 2xx so the
    provider stops redelivering a payload that can never be processed.
    """

    message: str
    code: str = "billing_webhook_error"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    acknowledge: bool = False
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        return self._payload

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


@dataclass
class SignatureInvalidError(BillingWebhookError):
    """The delivery could not be authenticated."""

    code: str = "signature_invalid"
    status_code: int = status.HTTP_400_BAD_REQUEST


@dataclass
class WebhookNotConfiguredError(BillingWebhookError):
    code: str = "webhook_not_configured"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR


@dataclass
class MalformedEventError(BillingWebhookError):
    """The payload is missing fields the ledger needs."""

    code: str = "malformed_event"
    status_code: int = status.HTTP_200_OK
    acknowledge: bool = True


@dataclass
class UserNotFoundError(BillingWebhookError):
    """No user or ledger matches the event."""

    code: str = "user_not_found"
    status_code: int = status.HTTP_200_OK
    acknowledge: bool = True


@dataclass
class ProviderAPIError(BillingWebhookError):
    """Retrieving provider objects failed; the provider should redeliver."""

    code: str = "provider_api_error"
    status_code: int = status.HTTP_503_SERVICE_UNAVAILABLE


@dataclass
class PersistenceError(BillingWebhookError):
    """The ledger store rejected the write; the provider should redeliver."""

    code: str = "persistence_error"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
