from __future__ import annotations

from enum import StrEnum


class PlanTier(StrEnum):
    """Subscription tier recorded on a ledger account."""

    FREE = "free"
    STUDENT = "student"
    PRO = "pro"
    MAX = "max"


class LedgerEntryType(StrEnum):
    CREDIT_PURCHASE = "credit_purchase"
    SUBSCRIPTION_ACTIVATION = "subscription_activation"
