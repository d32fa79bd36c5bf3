from datetime import timedelta

import pytest

from backend.app.billing import load_billing_config


def test_defaults_apply_when_environment_is_empty():
    config = load_billing_config({})

    assert config.stripe_secret_key is None
    assert config.webhook_secret is None
    assert config.api_timeout == 10.0
    assert config.max_network_retries == 2
    assert config.webhook_tolerance == 300
    assert config.carryover_grace == timedelta(days=30)
    assert config.plan_catalog_path is None
    assert config.ledger_backend == "postgres"
    assert config.ledger_auto_migrate is False


def test_environment_overrides_are_parsed():
    config = load_billing_config(
        {
            "STRIPE_SECRET_KEY": "sk_test_123",
            "STRIPE_WEBHOOK_SECRET": "whsec_123",
            "STRIPE_API_TIMEOUT": "2.5",
            "STRIPE_MAX_NETWORK_RETRIES": "0",
            "STRIPE_WEBHOOK_TOLERANCE": "60",
            "CARRYOVER_GRACE_DAYS": "14",
            "PLAN_CATALOG_PATH": "/etc/plans.json",
            "LEDGER_BACKEND": "Memory",
            "LEDGER_AUTO_MIGRATE": "yes",
        }
    )

    assert config.stripe_secret_key == "sk_test_123"
    assert config.webhook_secret == "whsec_123"
    assert config.api_timeout == 2.5
    assert config.max_network_retries == 0
    assert config.webhook_tolerance == 60
    assert config.carryover_grace == timedelta(days=14)
    assert config.plan_catalog_path == "/etc/plans.json"
    assert config.ledger_backend == "memory"
    assert config.ledger_auto_migrate is True


def test_unknown_ledger_backend_is_rejected():
    with pytest.raises(ValueError):
        load_billing_config({"LEDGER_BACKEND": "sqlite"})


def test_non_numeric_values_are_rejected():
    with pytest.raises(ValueError):
        load_billing_config({"STRIPE_API_TIMEOUT": "soon"})
