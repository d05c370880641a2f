"""Wire shapes exchanged with the Snipe.sh mobile money API.

Outbound request bodies are ``TypedDict``s. Inbound bodies are validated with
pydantic at the boundary so that a missing or malformed field surfaces as a
``PaymentProviderError`` instead of leaking ``None`` into the domain.
"""

from __future__ import annotations

from typing import Any, Literal, NotRequired, TypedDict

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .enums import PaymentStatus

__all__ = [
    "ChargeInitiated",
    "ChargeMetadataPayload",
    "ChargeRejected",
    "ChargeRequestPayload",
    "ChargeResponse",
    "PaymentStatusLookup",
    "WebhookEvent",
    "map_provider_status",
]


_COMPLETED_STATUSES = frozenset({"completed", "success", "successful", "succeeded", "paid"})
_FAILED_STATUSES = frozenset(
    {"failed", "failure", "cancelled", "canceled", "expired", "rejected", "declined"}
)


def map_provider_status(raw: str | None) -> PaymentStatus:
    """Map a provider status string to the internal enum, ignoring case.

    Unknown values are treated as still pending so that they never close an
    attempt.
    """

    if not raw:
        return PaymentStatus.PENDING
    normalised = raw.strip().lower()
    if normalised in _COMPLETED_STATUSES:
        return PaymentStatus.COMPLETED
    if normalised in _FAILED_STATUSES:
        return PaymentStatus.FAILED
    return PaymentStatus.PENDING


class ChargeMetadataPayload(TypedDict, total=False):
    payment_id: str
    user_id: int
    product_kind: str
    product_code: str
    plan_key: str
    billing_period: str
    credits: int


class ChargeRequestPayload(TypedDict):
    amount: int
    currency: str
    phone_number: str
    description: str
    callback_url: str
    metadata: ChargeMetadataPayload
    customer_name: NotRequired[str]
    customer_email: NotRequired[str]


class _ProviderModel(BaseModel):
    model_config = ConfigDict(extra="allow", str_strip_whitespace=True)


class ChargeData(_ProviderModel):
    reference: str = Field(..., min_length=1)
    transaction_id: str | None = None


class ChargeInitiated(_ProviderModel):
    """Successful answer to ``POST /payments/init``."""

    status: Literal["success"]
    data: ChargeData
    message: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _lower_status(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value


class ChargeRejected(_ProviderModel):
    """Any other well-formed answer to ``POST /payments/init``."""

    status: str
    message: str | None = None
    error: str | None = None

    @property
    def reason(self) -> str:
        return self.message or self.error or f"provider status {self.status!r}"


ChargeResponse = ChargeInitiated | ChargeRejected


class PaymentStatusLookup(_ProviderModel):
    """Answer to ``GET /payments/{reference}``."""

    status: str = Field(..., min_length=1)
    provider: str | None = None
    transaction_id: str | None = None

    @property
    def mapped_status(self) -> PaymentStatus:
        return map_provider_status(self.status)

    @property
    def mobile_provider(self) -> str | None:
        return self.provider.lower() if self.provider else None


class WebhookEvent(_ProviderModel):
    """Verified webhook body pushed by the provider."""

    event: str | None = None
    reference: str = Field(..., min_length=1)
    transaction_id: str | None = None
    status: str = Field(..., min_length=1)
    amount: int | None = None
    phone_number: str | None = None
    provider: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("metadata", mode="before")
    @classmethod
    def _default_metadata(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def mapped_status(self) -> PaymentStatus:
        return map_provider_status(self.status)

    @property
    def mobile_provider(self) -> str | None:
        return self.provider.lower() if self.provider else None
