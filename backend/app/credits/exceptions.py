"""Errors raised while spending credits."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


@dataclass
class InsufficientCreditsError(Exception):
    """Raised when a pool cannot cover a requested debit."""

    pool: str
    requested: int
    available: int
    code: str = "insufficient_credits"
    status_code: int = status.HTTP_402_PAYMENT_REQUIRED
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        self.message = (
            f"Insufficient {self.pool} credits. Required: {self.requested}, "
            f"available: {self.available}. Please upgrade your plan."
        )
        payload: Dict[str, Any] = {
            "error": self.code,
            "message": self.message,
            "pool": self.pool,
            "requested": self.requested,
            "available": self.available,
        }
        if self.detail:
            payload.update(self.detail)
        self._payload = payload
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        return self._payload

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=dict(self.payload))
