from __future__ import annotations

import datetime as dt
import uuid

from pydantic import BaseModel, ConfigDict, Field, computed_field

from billing.payments.enums import BillingPeriod, PaymentStatus, ProductKind, WebhookOutcome
from billing.payments.phone import format_phone_number_display
from billing.payments.service import PaymentRequest

FAILED_PAYMENT_MESSAGE = (
    "The mobile money payment was not completed. "
    "Please try again or use another number."
)


class PaymentCreateRequest(BaseModel):
    """Client payload for initiating a mobile money payment."""

    product_code: str = Field(
        ...,
        min_length=2,
        max_length=64,
        description="Plan key (e.g. 'pro') or credit package key (e.g. 'credits_50')",
    )
    phone_number: str = Field(
        ...,
        min_length=9,
        max_length=24,
        description="Tanzanian mobile number in 0XXXXXXXXX, +255XXXXXXXXX or 255XXXXXXXXX form",
    )
    billing_period: BillingPeriod = Field(
        default=BillingPeriod.MONTHLY,
        description="Billing period, only meaningful for plans",
    )
    product_kind: ProductKind | None = Field(
        default=None,
        description="Restrict the lookup to plans or credit packages",
    )

    model_config = ConfigDict(str_strip_whitespace=True)

    def to_domain(self) -> PaymentRequest:
        return PaymentRequest(
            product_code=self.product_code,
            phone_number=self.phone_number,
            billing_period=self.billing_period,
            product_kind=self.product_kind,
        )


class PaymentResponse(BaseModel):
    """Customer-facing view of a payment attempt."""

    id: uuid.UUID = Field(..., description="Internal payment identifier")
    provider_reference: str | None = Field(
        default=None, description="Reference assigned by the mobile money provider"
    )
    product_kind: ProductKind
    product_code: str
    billing_period: BillingPeriod | None = None
    credits: int
    amount: int
    currency: str
    phone_number: str
    status: PaymentStatus
    mobile_provider: str | None = None
    created_at: dt.datetime
    completed_at: dt.datetime | None = None
    activated_at: dt.datetime | None = None

    model_config = ConfigDict(from_attributes=True)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def phone_number_display(self) -> str:
        return format_phone_number_display(self.phone_number)

    # Provider rejection text stays on the attempt row and its audit events.
    @computed_field  # type: ignore[prop-decorator]
    @property
    def failure_reason(self) -> str | None:
        if self.status is PaymentStatus.FAILED:
            return FAILED_PAYMENT_MESSAGE
        return None


class PaymentListResponse(BaseModel):
    items: list[PaymentResponse]


class CreditPackageResponse(BaseModel):
    code: str
    credits: int
    amount: int
    currency: str
    description: str | None = None

    model_config = ConfigDict(from_attributes=True)


class PlanResponse(BaseModel):
    code: str
    name: str
    tier: str
    monthly_amount: int
    yearly_amount: int
    monthly_credits: int
    currency: str

    model_config = ConfigDict(from_attributes=True)


class CatalogResponse(BaseModel):
    credit_packages: list[CreditPackageResponse]
    plans: list[PlanResponse]


class PaymentWebhookAck(BaseModel):
    """Acknowledgement payload returned to provider webhooks."""

    status: str = Field(default="accepted")
    outcome: WebhookOutcome
