from __future__ import annotations

import hashlib
import hmac
from itertools import count
from typing import Any
from uuid import uuid4

import orjson

from billing.payments.enums import BillingPeriod, PaymentStatus, ProductKind
from billing.payments.models import PaymentAttempt

_counter = count(1)


def payment_attempt_factory(
    *,
    user_id: int,
    product_kind: ProductKind = ProductKind.CREDITS,
    product_code: str = "credits_50",
    credits: int = 50,
    amount: int = 2_500,
    status: PaymentStatus = PaymentStatus.PENDING,
    billing_period: BillingPeriod | None = None,
    provider_reference: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> PaymentAttempt:
    """Factory for attempts that skip the provider round trip."""
    index = next(_counter)
    return PaymentAttempt(
        user_id=user_id,
        product_kind=product_kind,
        product_code=product_code,
        billing_period=billing_period,
        credits=credits,
        amount=amount,
        currency="TZS",
        phone_number="255712345678",
        status=status,
        provider_reference=provider_reference or f"SNP-{index}-{uuid4().hex[:8]}",
        metadata=metadata or {},
    )


def plan_attempt_factory(
    *,
    user_id: int,
    plan: str = "pro",
    billing_period: BillingPeriod = BillingPeriod.MONTHLY,
    credits: int = 500,
    amount: int = 29_000,
    status: PaymentStatus = PaymentStatus.COMPLETED,
) -> PaymentAttempt:
    return payment_attempt_factory(
        user_id=user_id,
        product_kind=ProductKind.PLAN,
        product_code=plan,
        credits=credits,
        amount=amount,
        status=status,
        billing_period=billing_period,
        metadata={"plan_tier": plan},
    )


WEBHOOK_SECRET = "whsec-test-secret"


def signed_webhook(
    payload: dict[str, Any] | bytes,
    *,
    secret: str = WEBHOOK_SECRET,
    timestamp: str = "1760000000",
    event: str = "payment.completed",
) -> tuple[bytes, dict[str, str]]:
    """Return a raw body and the headers the provider would send with it."""
    body = payload if isinstance(payload, bytes) else orjson.dumps(payload)
    signature = hmac.new(
        secret.encode("utf-8"), timestamp.encode("utf-8") + b"." + body, hashlib.sha256
    ).hexdigest()
    headers = {
        "Content-Type": "application/json",
        "X-Webhook-Signature": signature,
        "X-Webhook-Timestamp": timestamp,
        "X-Webhook-Event": event,
    }
    return body, headers
