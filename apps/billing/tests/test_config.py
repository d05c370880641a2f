from __future__ import annotations

import pytest
from pydantic import ValidationError

from billing.core.config import (
    DatabaseSettings,
    Environment,
    PaymentsSettings,
    RateLimitSettings,
    Settings,
    get_settings,
)
from billing.db.session import _engine_options


def test_settings_read_nested_environment() -> None:
    settings = get_settings()

    assert settings.environment is Environment.TEST
    assert settings.is_testing is True
    assert settings.debug is True
    assert settings.snippe.api_key is not None
    assert settings.snippe.api_key.get_secret_value() == "snippe-test-api-key"
    assert settings.snippe.base_url == "https://snippe.test/v1"
    assert settings.prometheus.enabled is False
    assert settings.rate_limit.payment_requests_per_window == 5


def test_get_settings_is_cached() -> None:
    assert get_settings() is get_settings()


def test_callback_url_defaults_to_webhook_route() -> None:
    settings = get_settings()

    assert settings.snippe_callback_url == "https://billing.test/api/v1/webhooks/snippe"


def test_explicit_callback_url_wins(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SNIPPE__CALLBACK_URL", "https://hooks.example.com/snippe")
    get_settings.cache_clear()

    assert get_settings().snippe_callback_url == "https://hooks.example.com/snippe"


def test_rate_limit_override(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RATE_LIMIT__PAYMENT_REQUESTS_PER_WINDOW", "2")
    monkeypatch.setenv("RATE_LIMIT__WINDOW_SECONDS", "30")

    settings = Settings()

    assert settings.rate_limit == RateLimitSettings(
        payment_requests_per_window=2, window_seconds=30
    )


def test_default_catalog() -> None:
    catalog = PaymentsSettings()

    assert catalog.get_credit_package("credits_50").amount == 2_500
    assert catalog.get_credit_package(" CREDITS_100 ").credits == 100
    assert catalog.get_credit_package("credits_250").amount == 12_500
    assert catalog.get_plan("student").monthly_amount == 15_000
    assert catalog.get_plan("pro").yearly_amount == 290_000
    assert catalog.get_plan("max").monthly_credits == 2_000
    assert {plan.currency for plan in catalog.plans.values()} == {"TZS"}


def test_catalog_keys_are_normalised() -> None:
    catalog = PaymentsSettings.model_validate(
        {
            "credit_packages": {
                " Bonus_10 ": {"code": "whatever", "credits": 10, "amount": 500}
            },
            "plans": {},
        }
    )

    assert list(catalog.credit_packages) == ["bonus_10"]
    assert catalog.credit_packages["bonus_10"].code == "bonus_10"
    with pytest.raises(KeyError):
        catalog.get_plan("pro")


def test_catalog_rejects_non_positive_amounts() -> None:
    with pytest.raises(ValidationError):
        PaymentsSettings.model_validate(
            {"credit_packages": {"free": {"code": "free", "credits": 10, "amount": 0}}}
        )


def test_postgres_engine_uses_configured_pool() -> None:
    database = DatabaseSettings(host="db", pool_size=4, max_overflow=2)

    assert database.dsn.startswith("postgresql+asyncpg://postgres:postgres@db:5432/")
    options = _engine_options(database)
    assert options["pool_size"] == 4
    assert options["max_overflow"] == 2
    assert options["pool_pre_ping"] is True
