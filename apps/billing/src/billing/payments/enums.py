from __future__ import annotations

from enum import StrEnum


class PaymentStatus(StrEnum):
    """Life cycle states for a payment attempt."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


class PaymentEventType(StrEnum):
    """Source for payment events stored in the audit log."""

    REQUEST = "request"
    POLL = "poll"
    WEBHOOK = "webhook"
    SYSTEM = "system"


class ProductKind(StrEnum):
    """What a payment attempt buys."""

    PLAN = "plan"
    CREDITS = "credits"


class BillingPeriod(StrEnum):
    MONTHLY = "monthly"
    YEARLY = "yearly"

    @property
    def days(self) -> int:
        return 365 if self is BillingPeriod.YEARLY else 30


class WebhookOutcome(StrEnum):
    """What the webhook receiver did with a verified event."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    PAYMENT_NOT_FOUND = "payment_not_found"
