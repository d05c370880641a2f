from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from account_service.models import User
from billing.api.dependencies.users import get_current_user
from billing.api.schemas.ledger import (
    BalanceResponse,
    LedgerEntryListResponse,
    LedgerEntryResponse,
    SubscriptionResponse,
)
from billing.db.dependencies import get_db_session
from billing.ledger.service import LedgerService
from billing.payments.dependencies import get_ledger_service

router = APIRouter(prefix="/api/v1/ledger", tags=["ledger"])


@router.get("/balance", response_model=BalanceResponse, summary="Current credit balance")
async def get_balance(
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
    ledger: LedgerService = Depends(get_ledger_service),
) -> BalanceResponse:
    balance = await ledger.get_balance(session, current_user.id)
    return BalanceResponse(user_id=current_user.id, credit_balance=balance)


@router.get(
    "/subscription",
    response_model=SubscriptionResponse,
    summary="Active plan tier and next renewal date",
)
async def get_subscription(
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
    ledger: LedgerService = Depends(get_ledger_service),
) -> SubscriptionResponse:
    state = await ledger.get_subscription(session, current_user.id)
    return SubscriptionResponse.model_validate(state)


@router.get(
    "/transactions",
    response_model=LedgerEntryListResponse,
    summary="Credit and subscription history, newest first",
)
async def list_transactions(
    limit: int = Query(default=50, ge=1, le=200),
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
    ledger: LedgerService = Depends(get_ledger_service),
) -> LedgerEntryListResponse:
    entries = await ledger.list_entries(session, current_user.id, limit=limit)
    return LedgerEntryListResponse(
        items=[LedgerEntryResponse.model_validate(entry) for entry in entries]
    )
