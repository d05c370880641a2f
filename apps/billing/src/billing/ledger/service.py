from __future__ import annotations

import datetime as dt
import uuid
from collections.abc import Callable
from dataclasses import dataclass

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from billing.db.base import utcnow
from billing.observability.metrics import metrics_service
from billing.payments.enums import BillingPeriod, PaymentStatus, ProductKind
from billing.payments.models import PaymentAttempt

from .enums import LedgerEntryType, PlanTier
from .models import LedgerAccount, LedgerEntry

logger = structlog.get_logger(__name__)

__all__ = ["ActivationResult", "LedgerService", "SubscriptionState"]


@dataclass(slots=True, frozen=True)
class ActivationResult:
    payment_id: uuid.UUID
    user_id: int
    entry_type: LedgerEntryType
    credits: int
    balance_after: int
    plan_tier: PlanTier
    renewal_date: dt.datetime | None


@dataclass(slots=True, frozen=True)
class SubscriptionState:
    user_id: int
    plan_tier: PlanTier
    renewal_date: dt.datetime | None
    active: bool


class LedgerService:
    """Owns every mutation of :class:`LedgerAccount`.

    ``activate`` is the only write path. It is safe to call any number of
    times, from any number of concurrent requests, for the same payment
    attempt: three database guards make sure at most one call mutates the
    account.

    1. The claim ``UPDATE`` only matches a completed attempt whose
       ``activated_at`` is still empty, so only one transaction gets a row
       back.
    2. The account row is locked (``SELECT ... FOR UPDATE``) and the balance
       is incremented in SQL, never from a value read earlier.
    3. ``ledger_entries.payment_attempt_id`` is unique; the entry is written
       in a savepoint together with the account update and a violation rolls
       both back.

    Like the payment service it only flushes. The caller commits.
    """

    def __init__(self, *, now: Callable[[], dt.datetime] = utcnow) -> None:
        self._now = now

    async def activate(
        self, session: AsyncSession, payment_id: uuid.UUID
    ) -> ActivationResult | None:
        """Grant what a completed attempt paid for, exactly once.

        Returns ``None`` when there is nothing to do: the attempt is not
        completed, or another caller has already activated it.
        """

        now = self._now()
        claim = await session.execute(
            update(PaymentAttempt)
            .where(
                PaymentAttempt.id == payment_id,
                PaymentAttempt.status == PaymentStatus.COMPLETED,
                PaymentAttempt.activated_at.is_(None),
            )
            .values(activated_at=now, updated_at=now)
            .returning(PaymentAttempt.id)
            .execution_options(synchronize_session=False)
        )
        if claim.scalar_one_or_none() is None:
            logger.info("ledger_activation_skipped", payment_id=str(payment_id))
            metrics_service.record_activation("unknown", "skipped")
            return None

        attempt = await session.get(PaymentAttempt, payment_id, populate_existing=True)
        if attempt is None:  # pragma: no cover - the claim just matched it
            return None

        user_id = attempt.user_id
        entry_type = (
            LedgerEntryType.SUBSCRIPTION_ACTIVATION
            if attempt.product_kind is ProductKind.PLAN
            else LedgerEntryType.CREDIT_PURCHASE
        )

        try:
            async with session.begin_nested():
                result = await self._apply(session, attempt, entry_type, now)
        except IntegrityError:
            logger.warning(
                "ledger_activation_duplicate",
                payment_id=str(payment_id),
                user_id=user_id,
            )
            metrics_service.record_activation(entry_type.value, "duplicate")
            return None

        logger.info(
            "ledger_activation_applied",
            payment_id=str(payment_id),
            user_id=result.user_id,
            entry_type=entry_type.value,
            credits=result.credits,
            balance_after=result.balance_after,
            plan_tier=result.plan_tier.value,
        )
        metrics_service.record_activation(entry_type.value, "applied")
        return result

    async def _apply(
        self,
        session: AsyncSession,
        attempt: PaymentAttempt,
        entry_type: LedgerEntryType,
        now: dt.datetime,
    ) -> ActivationResult:
        account = await self._lock_account(session, attempt.user_id)

        values: dict[str, object] = {
            "credit_balance": LedgerAccount.credit_balance + attempt.credits,
            "updated_at": now,
        }
        plan_tier = account.plan_tier
        renewal_date = account.renewal_date
        if entry_type is LedgerEntryType.SUBSCRIPTION_ACTIVATION:
            plan_tier = _plan_tier_for(attempt)
            period = BillingPeriod(attempt.billing_period or BillingPeriod.MONTHLY)
            start = max(now, renewal_date) if renewal_date is not None else now
            renewal_date = start + dt.timedelta(days=period.days)
            values["plan_tier"] = plan_tier
            values["renewal_date"] = renewal_date

        updated = await session.execute(
            update(LedgerAccount)
            .where(LedgerAccount.id == account.id)
            .values(**values)
            .returning(LedgerAccount.credit_balance)
            .execution_options(synchronize_session=False)
        )
        balance_after = int(updated.scalar_one())

        session.add(
            LedgerEntry(
                payment_attempt_id=attempt.id,
                user_id=attempt.user_id,
                entry_type=entry_type,
                credits=attempt.credits,
                balance_after=balance_after,
                plan_tier=plan_tier,
                renewal_date=renewal_date,
                metadata={
                    "product_code": attempt.product_code,
                    "amount": attempt.amount,
                    "currency": attempt.currency,
                    "provider_reference": attempt.provider_reference,
                },
            )
        )
        await session.flush()
        await session.refresh(account)

        return ActivationResult(
            payment_id=attempt.id,
            user_id=attempt.user_id,
            entry_type=entry_type,
            credits=attempt.credits,
            balance_after=balance_after,
            plan_tier=PlanTier(plan_tier),
            renewal_date=renewal_date,
        )

    async def _lock_account(self, session: AsyncSession, user_id: int) -> LedgerAccount:
        stmt = (
            select(LedgerAccount)
            .where(LedgerAccount.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        account = (await session.execute(stmt)).scalar_one_or_none()
        if account is not None:
            return account

        try:
            async with session.begin_nested():
                account = LedgerAccount(
                    user_id=user_id, credit_balance=0, plan_tier=PlanTier.FREE
                )
                session.add(account)
                await session.flush()
        except IntegrityError:
            # Another request opened the account first.
            account = (await session.execute(stmt)).scalar_one()
        return account

    async def get_account(
        self, session: AsyncSession, user_id: int
    ) -> LedgerAccount | None:
        stmt = select(LedgerAccount).where(LedgerAccount.user_id == user_id)
        return (await session.execute(stmt)).scalar_one_or_none()

    async def get_balance(self, session: AsyncSession, user_id: int) -> int:
        account = await self.get_account(session, user_id)
        return account.credit_balance if account is not None else 0

    async def get_subscription(
        self, session: AsyncSession, user_id: int
    ) -> SubscriptionState:
        account = await self.get_account(session, user_id)
        if account is None:
            return SubscriptionState(
                user_id=user_id, plan_tier=PlanTier.FREE, renewal_date=None, active=False
            )
        active = (
            account.plan_tier is not PlanTier.FREE
            and account.renewal_date is not None
            and account.renewal_date > self._now()
        )
        return SubscriptionState(
            user_id=user_id,
            plan_tier=account.plan_tier,
            renewal_date=account.renewal_date,
            active=active,
        )

    async def list_entries(
        self, session: AsyncSession, user_id: int, *, limit: int = 50
    ) -> list[LedgerEntry]:
        stmt = (
            select(LedgerEntry)
            .where(LedgerEntry.user_id == user_id)
            .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id)
            .limit(limit)
        )
        return list((await session.execute(stmt)).scalars().all())


def _plan_tier_for(attempt: PaymentAttempt) -> PlanTier:
    tier = attempt.metadata_dict.get("plan_tier") or attempt.product_code
    try:
        return PlanTier(str(tier).lower())
    except ValueError:
        logger.warning(
            "ledger_unknown_plan_tier",
            payment_id=str(attempt.id),
            product_code=attempt.product_code,
            tier=tier,
        )
        return PlanTier.FREE
