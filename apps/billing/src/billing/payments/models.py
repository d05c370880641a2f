from __future__ import annotations

import datetime as dt
import uuid
from typing import Any

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing.core.constants import DEFAULT_CURRENCY
from billing.db.base import (
    Base,
    MetadataColumnMixin,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
)
from billing.db.types import GUID, JSONType, UTCDateTime, enum_type

from .enums import BillingPeriod, PaymentEventType, PaymentStatus, ProductKind


def _idempotency_key(payment_id: uuid.UUID) -> str:
    return f"attempt-{payment_id.hex}"


class PaymentAttempt(Base, MetadataColumnMixin, UUIDPrimaryKeyMixin, TimestampMixin):
    """A single mobile money charge request and its lifecycle."""

    __tablename__ = "payment_attempts"
    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_payment_attempts_idempotency_key"),
        UniqueConstraint(
            "provider_reference", name="uq_payment_attempts_provider_reference"
        ),
        CheckConstraint("amount > 0", name="amount_positive"),
        CheckConstraint("credits >= 0", name="credits_non_negative"),
    )

    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    provider_reference: Mapped[str | None] = mapped_column(String(128))
    idempotency_key: Mapped[str] = mapped_column(String(64), nullable=False)
    product_kind: Mapped[ProductKind] = mapped_column(
        enum_type(ProductKind, "payment_product_kind"),
        nullable=False,
    )
    product_code: Mapped[str] = mapped_column(String(64), nullable=False)
    billing_period: Mapped[BillingPeriod | None] = mapped_column(
        enum_type(BillingPeriod, "payment_billing_period")
    )
    credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default=DEFAULT_CURRENCY
    )
    phone_number: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        enum_type(PaymentStatus, "payment_attempt_status"),
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True,
    )
    transaction_id: Mapped[str | None] = mapped_column(String(128))
    mobile_provider: Mapped[str | None] = mapped_column(String(64))
    failure_reason: Mapped[str | None] = mapped_column(String(255))
    provider_response: Mapped[dict[str, Any] | None] = mapped_column(JSONType())
    completed_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())
    activated_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())

    events: Mapped[list[PaymentEvent]] = relationship(
        back_populates="payment",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="PaymentEvent.created_at",
    )

    def __init__(self, **kwargs: Any) -> None:
        payment_id = kwargs.setdefault("id", uuid.uuid4())
        kwargs.setdefault("idempotency_key", _idempotency_key(payment_id))
        kwargs.setdefault("status", PaymentStatus.PENDING)
        super().__init__(**kwargs)

    @property
    def is_terminal(self) -> bool:
        return PaymentStatus(self.status).is_terminal


class PaymentEvent(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Append-only audit trail entry for each provider interaction."""

    __tablename__ = "payment_events"

    payment_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("payment_attempts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    event_type: Mapped[PaymentEventType] = mapped_column(
        enum_type(PaymentEventType, "payment_event_type"),
        nullable=False,
    )
    provider_status: Mapped[str | None] = mapped_column(String(64))
    note: Mapped[str | None] = mapped_column(String(255))
    data: Mapped[dict[str, Any]] = mapped_column(
        JSONType(), default=dict, nullable=False
    )

    payment: Mapped[PaymentAttempt] = relationship(back_populates="events")
