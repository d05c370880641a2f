from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from billing.api.schemas.payments import PaymentWebhookAck
from billing.db.dependencies import get_db_session
from billing.observability.metrics import metrics_service
from billing.payments.dependencies import get_payment_service
from billing.payments.exceptions import (
    PaymentConfigurationError,
    PaymentSignatureError,
    PaymentValidationError,
)
from billing.payments.service import PaymentService

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "x-webhook-signature"
TIMESTAMP_HEADER = "x-webhook-timestamp"
EVENT_HEADER = "x-webhook-event"


@router.post(
    "/snippe",
    response_model=PaymentWebhookAck,
    status_code=status.HTTP_200_OK,
    summary="Handle Snipe.sh mobile money webhook callbacks",
)
async def handle_snippe_webhook(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentWebhookAck:
    raw_body = await request.body()
    event_name = request.headers.get(EVENT_HEADER)

    try:
        payment_service.verify_webhook_signature(
            request.headers.get(SIGNATURE_HEADER),
            request.headers.get(TIMESTAMP_HEADER),
            raw_body,
        )
    except PaymentSignatureError as exc:
        logger.warning(
            "snippe_webhook_signature_error",
            error=str(exc),
            provider_event=event_name,
        )
        metrics_service.record_webhook("unauthorized")
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    except PaymentConfigurationError as exc:
        logger.error("snippe_webhook_configuration_error", error=str(exc))
        raise HTTPException(
            status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        ) from exc

    try:
        event, payload = payment_service.parse_webhook_event(raw_body)
    except PaymentValidationError as exc:
        logger.warning(
            "snippe_webhook_payload_invalid",
            error=str(exc),
            provider_event=event_name,
        )
        metrics_service.record_webhook("invalid")
        raise HTTPException(
            status.HTTP_400_BAD_REQUEST, detail="Invalid webhook payload"
        ) from exc

    try:
        result = await payment_service.process_webhook(
            session, event, payload, event_name=event_name
        )
        await session.commit()
    except Exception as exc:
        await session.rollback()
        logger.exception(
            "snippe_webhook_processing_failed",
            error=str(exc),
            provider_reference=event.reference,
        )
        raise

    metrics_service.record_webhook(result.outcome.value)
    logger.info(
        "snippe_webhook_processed",
        provider_reference=event.reference,
        outcome=result.outcome.value,
    )
    return PaymentWebhookAck(outcome=result.outcome)
