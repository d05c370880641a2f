from __future__ import annotations

from typing import Any

import orjson
import pytest
from fastapi import status
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from structlog.testing import capture_logs

from account_service.models import User
from billing.api.schemas.payments import FAILED_PAYMENT_MESSAGE
from billing.core.config import get_settings
from billing.ledger.models import LedgerEntry
from billing.payments.enums import PaymentEventType, PaymentStatus, WebhookOutcome
from billing.payments.exceptions import (
    PaymentConfigurationError,
    PaymentSignatureError,
    PaymentValidationError,
)
from billing.payments.models import PaymentAttempt, PaymentEvent
from billing.payments.service import PaymentService
from factories import payment_attempt_factory, signed_webhook

WEBHOOK_URL = "/api/v1/webhooks/snippe"


def _event(reference: str, status_value: str = "completed", **extra: Any) -> dict[str, Any]:
    return {
        "event": "payment.completed",
        "reference": reference,
        "transaction_id": "TX-777",
        "status": status_value,
        "amount": 2_500,
        "phone_number": "255712345678",
        "provider": "Vodacom",
        "metadata": {"payment_id": "ignored"},
        **extra,
    }


async def _create_payment(
    async_client: AsyncClient, auth_headers: dict[str, str]
) -> dict[str, Any]:
    response = await async_client.post(
        "/api/v1/payments",
        json={"product_code": "credits_50", "phone_number": "0712345678"},
        headers=auth_headers,
    )
    assert response.status_code == status.HTTP_201_CREATED, response.text
    return response.json()


async def _count(
    session_factory: async_sessionmaker[AsyncSession], model: type[Any]
) -> int:
    async with session_factory() as session:
        total = await session.scalar(select(func.count()).select_from(model))
    return int(total or 0)


@pytest.mark.asyncio
async def test_completed_webhook_credits_once_across_redelivery(
    async_client: AsyncClient,
    auth_headers: dict[str, str],
    notifier,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    payment = await _create_payment(async_client, auth_headers)
    body, headers = signed_webhook(_event(payment["provider_reference"]))

    first = await async_client.post(WEBHOOK_URL, content=body, headers=headers)

    assert first.status_code == status.HTTP_200_OK, first.text
    assert first.json() == {"status": "accepted", "outcome": WebhookOutcome.APPLIED.value}

    balance = await async_client.get("/api/v1/ledger/balance", headers=auth_headers)
    assert balance.json()["credit_balance"] == 50

    detail = await async_client.get(
        f"/api/v1/payments/{payment['id']}", headers=auth_headers
    )
    assert detail.json()["status"] == PaymentStatus.COMPLETED.value
    assert detail.json()["mobile_provider"] == "vodacom"
    assert detail.json()["activated_at"] is not None

    second = await async_client.post(WEBHOOK_URL, content=body, headers=headers)

    assert second.status_code == status.HTTP_200_OK
    assert second.json()["outcome"] == WebhookOutcome.DUPLICATE.value

    balance = await async_client.get("/api/v1/ledger/balance", headers=auth_headers)
    assert balance.json()["credit_balance"] == 50
    assert await _count(session_factory, LedgerEntry) == 1
    assert [n["status"] for n in notifier.notifications] == [PaymentStatus.COMPLETED]

    async with session_factory() as session:
        webhook_events = await session.scalar(
            select(func.count())
            .select_from(PaymentEvent)
            .where(PaymentEvent.event_type == PaymentEventType.WEBHOOK)
        )
    assert webhook_events == 2


@pytest.mark.asyncio
async def test_failed_webhook_after_completion_is_ignored(
    async_client: AsyncClient,
    auth_headers: dict[str, str],
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    payment = await _create_payment(async_client, auth_headers)
    reference = payment["provider_reference"]

    body, headers = signed_webhook(_event(reference))
    await async_client.post(WEBHOOK_URL, content=body, headers=headers)

    body, headers = signed_webhook(_event(reference, "failed"), event="payment.failed")
    late = await async_client.post(WEBHOOK_URL, content=body, headers=headers)

    assert late.status_code == status.HTTP_200_OK
    assert late.json()["outcome"] == WebhookOutcome.DUPLICATE.value

    async with session_factory() as session:
        attempt = await session.scalar(
            select(PaymentAttempt).where(PaymentAttempt.provider_reference == reference)
        )
    assert attempt is not None
    assert attempt.status is PaymentStatus.COMPLETED
    assert attempt.failure_reason is None


@pytest.mark.asyncio
async def test_failed_webhook_marks_attempt_failed_without_credit(
    async_client: AsyncClient,
    auth_headers: dict[str, str],
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    payment = await _create_payment(async_client, auth_headers)
    body, headers = signed_webhook(
        _event(
            payment["provider_reference"],
            "FAILED",
            metadata={"failure_reason": "Insufficient balance"},
        ),
        event="payment.failed",
    )

    response = await async_client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.json()["outcome"] == WebhookOutcome.APPLIED.value
    detail = await async_client.get(
        f"/api/v1/payments/{payment['id']}", headers=auth_headers
    )
    assert detail.json()["status"] == PaymentStatus.FAILED.value
    assert detail.json()["failure_reason"] == FAILED_PAYMENT_MESSAGE
    assert "Insufficient balance" not in detail.text
    assert await _count(session_factory, LedgerEntry) == 0


@pytest.mark.asyncio
async def test_pending_webhook_is_recorded_but_ignored(
    async_client: AsyncClient,
    auth_headers: dict[str, str],
) -> None:
    payment = await _create_payment(async_client, auth_headers)
    body, headers = signed_webhook(_event(payment["provider_reference"], "processing"))

    response = await async_client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.json()["outcome"] == WebhookOutcome.IGNORED.value
    detail = await async_client.get(
        f"/api/v1/payments/{payment['id']}", headers=auth_headers
    )
    assert detail.json()["status"] == PaymentStatus.PENDING.value


@pytest.mark.asyncio
async def test_unknown_reference_is_acknowledged(
    async_client: AsyncClient,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    body, headers = signed_webhook(_event("SNP-does-not-exist"))

    response = await async_client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["outcome"] == WebhookOutcome.PAYMENT_NOT_FOUND.value
    assert await _count(session_factory, PaymentEvent) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "drop_header", ["X-Webhook-Signature", "X-Webhook-Timestamp"]
)
async def test_missing_signature_headers_are_unauthorized(
    async_client: AsyncClient,
    auth_headers: dict[str, str],
    session_factory: async_sessionmaker[AsyncSession],
    drop_header: str,
) -> None:
    payment = await _create_payment(async_client, auth_headers)
    events_before = await _count(session_factory, PaymentEvent)
    body, headers = signed_webhook(_event(payment["provider_reference"]))
    headers.pop(drop_header)

    response = await async_client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert await _count(session_factory, PaymentEvent) == events_before
    assert await _count(session_factory, LedgerEntry) == 0


@pytest.mark.asyncio
async def test_bad_signature_is_unauthorized_with_zero_writes(
    async_client: AsyncClient,
    auth_headers: dict[str, str],
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    payment = await _create_payment(async_client, auth_headers)
    events_before = await _count(session_factory, PaymentEvent)
    body, headers = signed_webhook(
        _event(payment["provider_reference"]), secret="not-the-secret"
    )

    response = await async_client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert await _count(session_factory, PaymentEvent) == events_before
    detail = await async_client.get(
        f"/api/v1/payments/{payment['id']}", headers=auth_headers
    )
    assert detail.json()["status"] == PaymentStatus.PENDING.value


@pytest.mark.asyncio
async def test_unsigned_delivery_naming_an_event_is_unauthorized(
    async_client: AsyncClient,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    response = await async_client.post(
        WEBHOOK_URL,
        content=b"{}",
        headers={
            "X-Webhook-Event": "payment.completed",
            "X-Webhook-Signature": "deadbeef",
        },
    )

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert await _count(session_factory, PaymentEvent) == 0

    bare = await async_client.post(WEBHOOK_URL, content=b"")
    assert bare.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.asyncio
async def test_malformed_body_naming_an_event_is_bad_request(
    async_client: AsyncClient,
) -> None:
    body, headers = signed_webhook(b"[]", event="payment.failed")

    response = await async_client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"] == "Invalid webhook payload"


@pytest.mark.asyncio
async def test_reserialised_body_fails_verification(
    async_client: AsyncClient,
    auth_headers: dict[str, str],
) -> None:
    payment = await _create_payment(async_client, auth_headers)
    payload = _event(payment["provider_reference"])
    _, headers = signed_webhook(payload)
    # Same JSON document, different bytes.
    body = orjson.dumps(payload, option=orjson.OPT_INDENT_2)

    response = await async_client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.asyncio
async def test_malformed_body_with_valid_signature_is_bad_request(
    async_client: AsyncClient,
) -> None:
    body, headers = signed_webhook(b"{not json")

    response = await async_client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.asyncio
async def test_body_missing_reference_is_bad_request(async_client: AsyncClient) -> None:
    body, headers = signed_webhook({"status": "completed"})

    response = await async_client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.asyncio
async def test_unconfigured_secret_is_service_unavailable(
    async_client: AsyncClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv("SNIPPE__WEBHOOK_SECRET")
    get_settings.cache_clear()
    body, headers = signed_webhook(_event("SNP-1"))

    response = await async_client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE


@pytest.mark.asyncio
async def test_webhook_completes_attempt_that_was_never_activated(
    async_client: AsyncClient,
    auth_headers: dict[str, str],
    session_factory: async_sessionmaker[AsyncSession],
    user: User,
) -> None:
    attempt = payment_attempt_factory(user_id=user.id, status=PaymentStatus.COMPLETED)
    async with session_factory() as session:
        session.add(attempt)
        await session.commit()

    body, headers = signed_webhook(_event(attempt.provider_reference or ""))
    response = await async_client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.json()["outcome"] == WebhookOutcome.DUPLICATE.value
    balance = await async_client.get("/api/v1/ledger/balance", headers=auth_headers)
    assert balance.json()["credit_balance"] == 50


def _service() -> PaymentService:
    return PaymentService(settings=get_settings())


def test_verify_signature_accepts_valid_digest() -> None:
    body, headers = signed_webhook({"reference": "SNP-1", "status": "completed"})

    _service().verify_webhook_signature(
        headers["X-Webhook-Signature"].upper(), headers["X-Webhook-Timestamp"], body
    )


def test_verify_signature_binds_timestamp() -> None:
    body, headers = signed_webhook({"reference": "SNP-1", "status": "completed"})

    with pytest.raises(PaymentSignatureError):
        _service().verify_webhook_signature(
            headers["X-Webhook-Signature"], "1760000001", body
        )


def test_verify_signature_requires_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SNIPPE__WEBHOOK_SECRET", "")
    get_settings.cache_clear()
    body, headers = signed_webhook({"reference": "SNP-1", "status": "completed"})

    with pytest.raises(PaymentConfigurationError):
        _service().verify_webhook_signature(
            headers["X-Webhook-Signature"], headers["X-Webhook-Timestamp"], body
        )


def test_parse_webhook_event_rejects_non_object() -> None:
    with pytest.raises(PaymentValidationError):
        PaymentService.parse_webhook_event(b"[1, 2, 3]")


def test_parse_webhook_event_keeps_raw_payload() -> None:
    event, payload = PaymentService.parse_webhook_event(
        b'{"reference": "SNP-1", "status": "Completed", "metadata": null, "extra": 1}'
    )

    assert event.reference == "SNP-1"
    assert event.mapped_status is PaymentStatus.COMPLETED
    assert event.metadata == {}
    assert payload["extra"] == 1


@pytest.mark.asyncio
async def test_webhook_logs_keep_the_provider_event_name(
    async_session: AsyncSession,
) -> None:
    event, payload = PaymentService.parse_webhook_event(
        b'{"reference": "SNP-missing", "status": "completed"}'
    )

    with capture_logs() as logs:
        result = await _service().process_webhook(
            async_session, event, payload, event_name="payment.completed"
        )

    assert result.outcome is WebhookOutcome.PAYMENT_NOT_FOUND
    missing = [
        entry for entry in logs if entry["event"] == "snippe_webhook_payment_missing"
    ]
    assert len(missing) == 1
    assert missing[0]["provider_event"] == "payment.completed"
    assert missing[0]["provider_reference"] == "SNP-missing"
