from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from account_service.models import User
from billing.api.dependencies.users import get_current_user
from billing.api.schemas.payments import (
    CatalogResponse,
    CreditPackageResponse,
    PaymentCreateRequest,
    PaymentListResponse,
    PaymentResponse,
    PlanResponse,
)
from billing.db.dependencies import get_db_session
from billing.payments.dependencies import get_payment_service
from billing.payments.exceptions import (
    PaymentConfigurationError,
    PaymentError,
    PaymentForbiddenError,
    PaymentNotFoundError,
    PaymentProductNotFoundError,
    PaymentProviderError,
    PaymentProviderUnavailableError,
    PaymentValidationError,
)
from billing.payments.service import PaymentService
from billing.security.rate_limiter import RateLimiter, get_rate_limiter

router = APIRouter(prefix="/api/v1/payments", tags=["payments"])
logger = structlog.get_logger(__name__)

# Provider payloads never reach the client; only these messages do.
_PROVIDER_FAILURE_DETAIL = "The payment could not be started. Please try again."
_PROVIDER_UNAVAILABLE_DETAIL = (
    "The payment provider is temporarily unavailable. Please try again."
)
_LOOKUP_FAILURE_DETAIL = "Could not check the payment status. Please try again."


def _http_error(exc: PaymentError, *, lookup: bool = False) -> HTTPException:
    if isinstance(exc, PaymentValidationError):
        return HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    if isinstance(exc, (PaymentNotFoundError, PaymentProductNotFoundError)):
        return HTTPException(status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, PaymentForbiddenError):
        return HTTPException(status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, PaymentProviderUnavailableError):
        return HTTPException(
            status.HTTP_503_SERVICE_UNAVAILABLE, detail=_PROVIDER_UNAVAILABLE_DETAIL
        )
    if isinstance(exc, PaymentProviderError):
        return HTTPException(
            status.HTTP_502_BAD_GATEWAY,
            detail=_LOOKUP_FAILURE_DETAIL if lookup else _PROVIDER_FAILURE_DETAIL,
        )
    if isinstance(exc, PaymentConfigurationError):
        return HTTPException(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Mobile money payments are not configured",
        )
    return HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.get(
    "/catalog",
    response_model=CatalogResponse,
    summary="List purchasable credit packages and plans",
)
async def get_catalog(
    payment_service: PaymentService = Depends(get_payment_service),
) -> CatalogResponse:
    catalog = payment_service.catalog
    return CatalogResponse(
        credit_packages=[
            CreditPackageResponse.model_validate(package)
            for package in catalog.credit_packages.values()
        ],
        plans=[PlanResponse.model_validate(plan) for plan in catalog.plans.values()],
    )


@router.post(
    "",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a mobile money payment for a plan or credit package",
)
async def create_payment(
    payload: PaymentCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentResponse:
    await rate_limiter.check("payments:create", str(current_user.id))

    try:
        attempt = await payment_service.initiate_payment(
            session, current_user, payload.to_domain()
        )
        await session.commit()
    except (
        PaymentValidationError,
        PaymentProductNotFoundError,
        PaymentConfigurationError,
    ) as exc:
        await session.rollback()
        raise _http_error(exc) from exc
    except (PaymentProviderError, PaymentProviderUnavailableError) as exc:
        # Keep the attempt and its audit trail; a retry starts a new attempt.
        await session.commit()
        logger.warning(
            "payment_create_provider_error",
            user_id=current_user.id,
            error=str(exc),
        )
        raise _http_error(exc) from exc
    except Exception:
        await session.rollback()
        logger.exception("payment_create_failed", user_id=current_user.id)
        raise

    return PaymentResponse.model_validate(attempt)


@router.get(
    "",
    response_model=PaymentListResponse,
    summary="List the caller's payment attempts, newest first",
)
async def list_payments(
    limit: int = Query(default=20, ge=1, le=100),
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentListResponse:
    attempts = await payment_service.list_payments(session, current_user, limit=limit)
    return PaymentListResponse(
        items=[PaymentResponse.model_validate(attempt) for attempt in attempts]
    )


@router.get(
    "/{payment_id}",
    response_model=PaymentResponse,
    summary="Return a stored payment attempt without contacting the provider",
)
async def get_payment(
    payment_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentResponse:
    try:
        attempt = await payment_service.get_payment(session, current_user, payment_id)
    except (PaymentNotFoundError, PaymentForbiddenError) as exc:
        raise _http_error(exc) from exc
    return PaymentResponse.model_validate(attempt)


@router.post(
    "/{payment_id}/refresh",
    response_model=PaymentResponse,
    summary="Poll the provider for the latest status of a payment",
)
async def refresh_payment_status(
    payment_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentResponse:
    try:
        attempt = await payment_service.refresh_status(
            session, current_user, payment_id
        )
        await session.commit()
    except (
        PaymentNotFoundError,
        PaymentForbiddenError,
        PaymentConfigurationError,
        PaymentProviderError,
        PaymentProviderUnavailableError,
    ) as exc:
        await session.rollback()
        if isinstance(exc, PaymentProviderError | PaymentProviderUnavailableError):
            logger.warning(
                "payment_status_lookup_failed",
                payment_id=str(payment_id),
                error=str(exc),
            )
        raise _http_error(exc, lookup=True) from exc
    except Exception:
        await session.rollback()
        logger.exception("payment_status_refresh_failed", payment_id=str(payment_id))
        raise

    return PaymentResponse.model_validate(attempt)
