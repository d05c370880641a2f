"""Sentry error tracking integration."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.httpx import HttpxIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.redis import RedisIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

if TYPE_CHECKING:
    from billing.core.config import SentrySettings

# Headers that must never leave the process.
_SCRUBBED_HEADERS = frozenset({"x-api-key", "x-webhook-signature", "authorization"})


def configure_sentry(settings: SentrySettings, *, default_environment: str) -> bool:
    """Initialise the Sentry SDK; return whether it was enabled."""

    if not settings.enabled or settings.dsn is None:
        return False

    sentry_sdk.init(
        dsn=settings.dsn.get_secret_value(),
        environment=settings.environment or default_environment,
        release=settings.release,
        sample_rate=settings.sample_rate,
        traces_sample_rate=settings.traces_sample_rate,
        send_default_pii=settings.send_default_pii,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
            RedisIntegration(),
            HttpxIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        before_send=_before_send,
    )
    return True


def _before_send(
    event: dict[str, Any],
    hint: dict[str, Any] | None,
) -> dict[str, Any] | None:
    request = event.get("request") or {}
    if str(request.get("url", "")).endswith("/health"):
        return None

    headers = request.get("headers")
    if isinstance(headers, dict):
        for name in list(headers):
            if name.lower() in _SCRUBBED_HEADERS:
                headers[name] = "[Filtered]"
    return event


def add_breadcrumb(
    category: str,
    message: str,
    level: str = "info",
    **data: Any,
) -> None:
    """Add custom breadcrumb; a no-op when Sentry is not initialised."""

    sentry_sdk.add_breadcrumb(category=category, message=message, level=level, data=data)
