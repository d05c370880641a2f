from __future__ import annotations

from fastapi import Depends

from billing.core.config import Settings, get_settings
from billing.ledger.service import LedgerService
from billing.payments.gateway import PaymentGateway, SnippeGateway
from billing.payments.notifications import LoggingPaymentNotifier, PaymentNotifier
from billing.payments.service import PaymentService

_GATEWAY: SnippeGateway | None = None
_NOTIFIER: PaymentNotifier | None = None
_LEDGER: LedgerService | None = None


def get_payment_gateway(
    settings: Settings = Depends(get_settings),
) -> PaymentGateway | None:
    """Return the shared Snippe client, or ``None`` while no API key is configured.

    The webhook receiver works without an API key, so a missing key only
    fails the operations that actually call the provider.
    """

    global _GATEWAY
    if _GATEWAY is not None:
        return _GATEWAY

    snippe = settings.snippe
    if snippe.api_key is None or not snippe.api_key.get_secret_value():
        return None

    _GATEWAY = SnippeGateway(
        api_key=snippe.api_key.get_secret_value(),
        base_url=snippe.base_url,
        timeout=snippe.timeout_seconds,
    )
    return _GATEWAY


def get_payment_notifier() -> PaymentNotifier:
    global _NOTIFIER
    if _NOTIFIER is None:
        _NOTIFIER = LoggingPaymentNotifier()
    return _NOTIFIER


def get_ledger_service() -> LedgerService:
    global _LEDGER
    if _LEDGER is None:
        _LEDGER = LedgerService()
    return _LEDGER


def get_payment_service(
    settings: Settings = Depends(get_settings),
    gateway: PaymentGateway | None = Depends(get_payment_gateway),
    notifier: PaymentNotifier = Depends(get_payment_notifier),
    ledger: LedgerService = Depends(get_ledger_service),
) -> PaymentService:
    return PaymentService(
        settings=settings,
        gateway=gateway,
        notifier=notifier,
        ledger=ledger,
    )


async def close_payment_dependencies() -> None:
    """Close the pooled provider client; called on application shutdown."""

    if _GATEWAY is not None:
        await _GATEWAY.aclose()
    reset_payment_dependencies()


def reset_payment_dependencies() -> None:
    """Reset cached singletons to allow reconfiguration during tests."""

    global _GATEWAY, _NOTIFIER, _LEDGER
    _GATEWAY = None
    _NOTIFIER = None
    _LEDGER = None
