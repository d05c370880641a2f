from __future__ import annotations

import datetime as dt
import uuid

from pydantic import BaseModel, ConfigDict

from billing.ledger.enums import LedgerEntryType, PlanTier


class BalanceResponse(BaseModel):
    user_id: int
    credit_balance: int


class SubscriptionResponse(BaseModel):
    user_id: int
    plan_tier: PlanTier
    renewal_date: dt.datetime | None = None
    active: bool

    model_config = ConfigDict(from_attributes=True)


class LedgerEntryResponse(BaseModel):
    id: uuid.UUID
    payment_attempt_id: uuid.UUID
    entry_type: LedgerEntryType
    credits: int
    balance_after: int
    plan_tier: PlanTier | None = None
    renewal_date: dt.datetime | None = None
    created_at: dt.datetime

    model_config = ConfigDict(from_attributes=True)


class LedgerEntryListResponse(BaseModel):
    items: list[LedgerEntryResponse]
