from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import BigInteger, CheckConstraint, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from billing.db.base import (
    Base,
    MetadataColumnMixin,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
)
from billing.db.types import GUID, UTCDateTime, enum_type

from .enums import LedgerEntryType, PlanTier


class LedgerAccount(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Credit balance and subscription state for a single user."""

    __tablename__ = "ledger_accounts"
    __table_args__ = (
        UniqueConstraint("user_id", name="uq_ledger_accounts_user_id"),
        CheckConstraint("credit_balance >= 0", name="credit_balance_non_negative"),
    )

    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    credit_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    plan_tier: Mapped[PlanTier] = mapped_column(
        enum_type(PlanTier, "ledger_plan_tier"),
        nullable=False,
        default=PlanTier.FREE,
    )
    renewal_date: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())


class LedgerEntry(Base, MetadataColumnMixin, UUIDPrimaryKeyMixin, TimestampMixin):
    """One ledger mutation; at most one per payment attempt."""

    __tablename__ = "ledger_entries"
    __table_args__ = (
        UniqueConstraint(
            "payment_attempt_id", name="uq_ledger_entries_payment_attempt_id"
        ),
    )

    payment_attempt_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("payment_attempts.id", ondelete="RESTRICT"),
        nullable=False,
    )
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    entry_type: Mapped[LedgerEntryType] = mapped_column(
        enum_type(LedgerEntryType, "ledger_entry_type"),
        nullable=False,
    )
    credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    plan_tier: Mapped[PlanTier | None] = mapped_column(
        enum_type(PlanTier, "ledger_entry_plan_tier")
    )
    renewal_date: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())
