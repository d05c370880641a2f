from __future__ import annotations

from typing import Any, Protocol

import structlog

from .enums import PaymentStatus
from .models import PaymentAttempt


class PaymentNotifier(Protocol):
    """Surfaces terminal payment outcomes to the customer (SMS, push, email)."""

    async def notify(
        self,
        attempt: PaymentAttempt,
        status: PaymentStatus,
        context: dict[str, Any],
    ) -> None:
        """Dispatch a notification for ``attempt`` reaching ``status``."""


class LoggingPaymentNotifier:
    """Default notifier that logs outcomes in lieu of an external integration."""

    def __init__(self) -> None:
        self._logger = structlog.get_logger(__name__)

    async def notify(
        self,
        attempt: PaymentAttempt,
        status: PaymentStatus,
        context: dict[str, Any],
    ) -> None:
        self._logger.info(
            "payment_status_changed",
            user_id=attempt.user_id,
            payment_id=str(attempt.id),
            provider_reference=attempt.provider_reference,
            status=status.value,
            context=context,
        )
