"""Billing configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping, Optional
import os

_LEDGER_BACKENDS = {"postgres", "memory"}


@dataclass(frozen=True)
class BillingConfig:
    """Configuration for the payment provider and the credit ledger."""

    stripe_secret_key: Optional[str]
    webhook_secret: Optional[str]
    api_timeout: float
    max_network_retries: int
    webhook_tolerance: int
    carryover_grace: timedelta
    plan_catalog_path: Optional[str]
    ledger_backend: str
    ledger_auto_migrate: bool


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def load_billing_config(env: Optional[Mapping[str, str]] = None) -> BillingConfig:
    """Load :class:`BillingConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    ledger_backend = (env_mapping.get("LEDGER_BACKEND") or "postgres").strip().lower()
    if ledger_backend not in _LEDGER_BACKENDS:
        raise ValueError(f"Unsupported LEDGER_BACKEND {ledger_backend!r}")

    grace_days = max(0, _to_int(env_mapping.get("CARRYOVER_GRACE_DAYS"), default=30))

    return BillingConfig(
        stripe_secret_key=env_mapping.get("STRIPE_SECRET_KEY") or None,
        webhook_secret=env_mapping.get("STRIPE_WEBHOOK_SECRET") or None,
        api_timeout=max(1.0, _to_float(env_mapping.get("STRIPE_API_TIMEOUT"), default=10.0)),
        max_network_retries=max(0, _to_int(env_mapping.get("STRIPE_MAX_NETWORK_RETRIES"), default=2)),
        webhook_tolerance=max(1, _to_int(env_mapping.get("STRIPE_WEBHOOK_TOLERANCE"), default=300)),
        carryover_grace=timedelta(days=grace_days),
        plan_catalog_path=env_mapping.get("PLAN_CATALOG_PATH") or None,
        ledger_backend=ledger_backend,
        ledger_auto_migrate=_to_bool(env_mapping.get("LEDGER_AUTO_MIGRATE"), default=False),
    )
