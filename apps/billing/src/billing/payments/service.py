from __future__ import annotations

import hashlib
import hmac
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import orjson
import structlog
from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from account_service.models import User
from billing.core.config import PaymentsSettings, Settings
from billing.ledger.service import ActivationResult, LedgerService
from billing.observability.metrics import metrics_service
from billing.payments.enums import (
    BillingPeriod,
    PaymentEventType,
    PaymentStatus,
    ProductKind,
    WebhookOutcome,
)
from billing.payments.exceptions import (
    PaymentConfigurationError,
    PaymentForbiddenError,
    PaymentNotFoundError,
    PaymentProductNotFoundError,
    PaymentProviderError,
    PaymentProviderUnavailableError,
    PaymentSignatureError,
    PaymentValidationError,
)
from billing.payments.gateway import PaymentGateway
from billing.payments.models import PaymentAttempt, PaymentEvent
from billing.payments.notifications import LoggingPaymentNotifier, PaymentNotifier
from billing.payments.phone import normalize_phone_number
from billing.payments.types import (
    ChargeInitiated,
    ChargeMetadataPayload,
    ChargeRequestPayload,
    WebhookEvent,
)

_FAILURE_REASON_MAX_LENGTH = 255


@dataclass(slots=True)
class PaymentRequest:
    """Input payload required to initiate a mobile money payment."""

    product_code: str
    phone_number: str
    billing_period: BillingPeriod = BillingPeriod.MONTHLY
    product_kind: ProductKind | None = None


@dataclass(slots=True, frozen=True)
class ResolvedProduct:
    kind: ProductKind
    code: str
    amount: int
    currency: str
    credits: int
    description: str
    billing_period: BillingPeriod | None = None
    plan_tier: str | None = None


@dataclass(slots=True, frozen=True)
class WebhookResult:
    outcome: WebhookOutcome
    payment: PaymentAttempt | None = None
    activation: ActivationResult | None = None


class PaymentService:
    """Coordinates charge initiation, status reconciliation and webhook processing.

    Status changes after initiation go through :meth:`_transition`, a
    conditional ``UPDATE ... WHERE status = 'pending'``. The poller and the
    webhook receiver may race on the same attempt; exactly one of them sees
    its update match a row, and only that caller runs the activation
    procedure.

    The service only flushes. Routes own the transaction and decide whether
    to commit or roll back.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        gateway: PaymentGateway | None = None,
        notifier: PaymentNotifier | None = None,
        ledger: LedgerService | None = None,
    ) -> None:
        self._settings = settings
        self._gateway = gateway
        self._notifier = notifier or LoggingPaymentNotifier()
        self._ledger = ledger or LedgerService()
        self._logger = structlog.get_logger(__name__)

    @property
    def catalog(self) -> PaymentsSettings:
        return self._settings.payments

    # -- initiation --------------------------------------------------------

    async def initiate_payment(
        self, session: AsyncSession, user: User, request: PaymentRequest
    ) -> PaymentAttempt:
        """Create a pending attempt and ask the provider to push the charge.

        A provider rejection marks the attempt failed and raises
        ``PaymentProviderError``. A timeout raises
        ``PaymentProviderUnavailableError`` and leaves the attempt pending
        without a reference; retrying always starts a new attempt.
        """

        phone_number = normalize_phone_number(request.phone_number)
        product = self.resolve_product(request)
        gateway = self._require_gateway()

        attempt = PaymentAttempt(
            user_id=user.id,
            product_kind=product.kind,
            product_code=product.code,
            billing_period=product.billing_period,
            credits=product.credits,
            amount=product.amount,
            currency=product.currency,
            phone_number=phone_number,
            metadata={
                "description": product.description,
                "plan_tier": product.plan_tier,
                "initiated_at": self._now().isoformat(),
            },
        )
        session.add(attempt)

        payload = self._build_charge_payload(user, attempt, product)
        session.add(
            PaymentEvent(
                payment_id=attempt.id,
                event_type=PaymentEventType.REQUEST,
                provider_status=PaymentStatus.PENDING.value,
                data={"payload": dict(payload)},
                note="Charge requested",
            )
        )
        await session.flush()

        log = self._logger.bind(
            payment_id=str(attempt.id),
            user_id=user.id,
            product_kind=product.kind.value,
            product_code=product.code,
        )

        try:
            response = await gateway.initiate_charge(payload, attempt.idempotency_key)
        except PaymentProviderUnavailableError as exc:
            session.add(
                PaymentEvent(
                    payment_id=attempt.id,
                    event_type=PaymentEventType.SYSTEM,
                    note="Provider unreachable during initiation",
                    data={"error": str(exc)},
                )
            )
            await session.flush()
            log.warning("payment_initiation_unavailable", error=str(exc))
            metrics_service.record_initiation(product.kind.value, "unavailable")
            raise
        except PaymentProviderError as exc:
            await self._fail_initiation(session, attempt, str(exc), {"error": str(exc)})
            log.warning("payment_initiation_rejected", error=str(exc))
            metrics_service.record_initiation(product.kind.value, "rejected")
            raise

        raw_response = response.model_dump(mode="json")
        if not isinstance(response, ChargeInitiated):
            await self._fail_initiation(session, attempt, response.reason, raw_response)
            log.warning("payment_initiation_rejected", reason=response.reason)
            metrics_service.record_initiation(product.kind.value, "rejected")
            raise PaymentProviderError(response.reason)

        attempt.provider_reference = response.data.reference
        attempt.transaction_id = response.data.transaction_id
        attempt.provider_response = raw_response
        session.add(
            PaymentEvent(
                payment_id=attempt.id,
                event_type=PaymentEventType.REQUEST,
                provider_status=response.status,
                data={"response": raw_response},
                note="Charge accepted by provider",
            )
        )
        await session.flush()

        log.info(
            "payment_initiated",
            provider_reference=attempt.provider_reference,
            amount=attempt.amount,
            currency=attempt.currency,
        )
        metrics_service.record_initiation(product.kind.value, "accepted")
        return attempt

    def resolve_product(self, request: PaymentRequest) -> ResolvedProduct:
        code = request.product_code.strip().lower()
        kinds = (
            [request.product_kind]
            if request.product_kind is not None
            else [ProductKind.PLAN, ProductKind.CREDITS]
        )

        for kind in kinds:
            if kind is ProductKind.PLAN and code in self.catalog.plans:
                plan = self.catalog.get_plan(code)
                period = BillingPeriod(request.billing_period)
                amount = (
                    plan.yearly_amount
                    if period is BillingPeriod.YEARLY
                    else plan.monthly_amount
                )
                return ResolvedProduct(
                    kind=ProductKind.PLAN,
                    code=plan.code,
                    amount=amount,
                    currency=plan.currency,
                    credits=plan.monthly_credits,
                    description=f"{plan.name} - {period.value} subscription",
                    billing_period=period,
                    plan_tier=plan.tier,
                )
            if kind is ProductKind.CREDITS and code in self.catalog.credit_packages:
                package = self.catalog.get_credit_package(code)
                return ResolvedProduct(
                    kind=ProductKind.CREDITS,
                    code=package.code,
                    amount=package.amount,
                    currency=package.currency,
                    credits=package.credits,
                    description=package.description or f"{package.credits} AI credits",
                )

        raise PaymentProductNotFoundError(
            f"Unknown plan or credit package '{request.product_code}'"
        )

    # -- status polling ----------------------------------------------------

    async def refresh_status(
        self, session: AsyncSession, user: User, payment_id: uuid.UUID
    ) -> PaymentAttempt:
        """Ask the provider for the latest status of a pending attempt.

        Lookup failures propagate to the caller and leave the attempt as it
        was.
        """

        attempt = await session.get(PaymentAttempt, payment_id)
        if attempt is None:
            raise PaymentNotFoundError(f"Payment '{payment_id}' not found")
        if attempt.user_id != user.id:
            raise PaymentForbiddenError("Payment belongs to another user")

        if attempt.is_terminal or attempt.provider_reference is None:
            await self._ensure_activated(session, attempt)
            return attempt

        gateway = self._require_gateway()
        lookup = await gateway.fetch_status(attempt.provider_reference)
        raw_response = lookup.model_dump(mode="json")

        attempt.provider_response = raw_response
        if lookup.mobile_provider:
            attempt.mobile_provider = lookup.mobile_provider
        if lookup.transaction_id and not attempt.transaction_id:
            attempt.transaction_id = lookup.transaction_id
        session.add(
            PaymentEvent(
                payment_id=attempt.id,
                event_type=PaymentEventType.POLL,
                provider_status=lookup.status,
                data=raw_response,
                note="Status lookup",
            )
        )
        await session.flush()

        new_status = lookup.mapped_status
        if new_status.is_terminal:
            reason = raw_response.get("message") or raw_response.get("reason")
            won = await self._transition(
                session,
                attempt,
                new_status,
                source=PaymentEventType.POLL,
                failure_reason=str(reason) if reason else None,
                context=raw_response,
            )
            if won and new_status is PaymentStatus.COMPLETED:
                await self._ledger.activate(session, attempt.id)
                await session.refresh(attempt)

        self._logger.info(
            "payment_status_refreshed",
            payment_id=str(attempt.id),
            user_id=user.id,
            provider_status=lookup.status,
            status=PaymentStatus(attempt.status).value,
        )
        return attempt

    # -- webhooks ----------------------------------------------------------

    def verify_webhook_signature(
        self,
        signature: str | None,
        timestamp: str | None,
        raw_body: bytes,
    ) -> None:
        """Check ``signature`` against HMAC-SHA256 of ``"{timestamp}.{raw_body}"``.

        The digest covers the exact bytes received; the body must not be
        parsed and re-serialised before verification.
        """

        if not signature or not timestamp:
            raise PaymentSignatureError("Missing webhook signature headers")

        secret = self._settings.snippe.webhook_secret
        if secret is None or not secret.get_secret_value():
            raise PaymentConfigurationError("Snippe webhook secret is not configured")

        signed = timestamp.strip().encode("utf-8") + b"." + raw_body
        expected = hmac.new(
            secret.get_secret_value().encode("utf-8"),
            signed,
            hashlib.sha256,
        ).hexdigest()

        provided = signature.strip().lower().encode("utf-8")
        if not hmac.compare_digest(expected.encode("ascii"), provided):
            raise PaymentSignatureError("Webhook signature mismatch")

    @staticmethod
    def parse_webhook_event(raw_body: bytes) -> tuple[WebhookEvent, dict[str, Any]]:
        try:
            payload = orjson.loads(raw_body)
        except orjson.JSONDecodeError as exc:
            raise PaymentValidationError("Webhook body is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise PaymentValidationError("Webhook body must be a JSON object")
        try:
            event = WebhookEvent.model_validate(payload)
        except ValidationError as exc:
            raise PaymentValidationError(
                f"Webhook body is missing required fields: {exc.error_count()} error(s)"
            ) from exc
        return event, payload

    async def process_webhook(
        self,
        session: AsyncSession,
        event: WebhookEvent,
        payload: dict[str, Any],
        *,
        event_name: str | None = None,
    ) -> WebhookResult:
        """Apply a verified webhook to the matching attempt.

        Unknown references are acknowledged, not rejected, so the provider
        stops retrying an event nothing here can use.
        """

        log = self._logger.bind(
            provider_reference=event.reference,
            provider_event=event_name or event.event,
            provider_status=event.status,
        )

        stmt = select(PaymentAttempt).where(
            PaymentAttempt.provider_reference == event.reference
        )
        attempt = (await session.execute(stmt)).scalar_one_or_none()
        if attempt is None:
            log.warning("snippe_webhook_payment_missing")
            return WebhookResult(outcome=WebhookOutcome.PAYMENT_NOT_FOUND)

        log = log.bind(payment_id=str(attempt.id), user_id=attempt.user_id)
        if event.amount is not None and event.amount != attempt.amount:
            log.warning(
                "snippe_webhook_amount_mismatch",
                expected=attempt.amount,
                received=event.amount,
            )

        session.add(
            PaymentEvent(
                payment_id=attempt.id,
                event_type=PaymentEventType.WEBHOOK,
                provider_status=event.status,
                data=payload,
                note=f"Webhook event {event_name or event.event or 'unknown'}",
            )
        )
        if not attempt.is_terminal:
            attempt.provider_response = payload
            if event.mobile_provider:
                attempt.mobile_provider = event.mobile_provider
            if event.transaction_id and not attempt.transaction_id:
                attempt.transaction_id = event.transaction_id
        await session.flush()

        new_status = event.mapped_status
        if not new_status.is_terminal:
            log.info("snippe_webhook_ignored")
            return WebhookResult(outcome=WebhookOutcome.IGNORED, payment=attempt)

        reason = event.metadata.get("failure_reason") or event.metadata.get("reason")
        won = await self._transition(
            session,
            attempt,
            new_status,
            source=PaymentEventType.WEBHOOK,
            failure_reason=str(reason) if reason else None,
            context=payload,
        )
        if not won:
            activation = await self._ensure_activated(session, attempt)
            log.info(
                "snippe_webhook_duplicate",
                status=PaymentStatus(attempt.status).value,
            )
            return WebhookResult(
                outcome=WebhookOutcome.DUPLICATE, payment=attempt, activation=activation
            )

        activation = None
        if new_status is PaymentStatus.COMPLETED:
            activation = await self._ledger.activate(session, attempt.id)
            await session.refresh(attempt)

        log.info("snippe_webhook_applied", status=new_status.value)
        return WebhookResult(
            outcome=WebhookOutcome.APPLIED, payment=attempt, activation=activation
        )

    # -- queries -----------------------------------------------------------

    async def get_payment(
        self, session: AsyncSession, user: User, payment_id: uuid.UUID
    ) -> PaymentAttempt:
        attempt = await session.get(PaymentAttempt, payment_id)
        if attempt is None:
            raise PaymentNotFoundError(f"Payment '{payment_id}' not found")
        if attempt.user_id != user.id:
            raise PaymentForbiddenError("Payment belongs to another user")
        return attempt

    async def list_payments(
        self, session: AsyncSession, user: User, *, limit: int = 20
    ) -> list[PaymentAttempt]:
        stmt = (
            select(PaymentAttempt)
            .where(PaymentAttempt.user_id == user.id)
            .order_by(PaymentAttempt.created_at.desc(), PaymentAttempt.id)
            .limit(limit)
        )
        return list((await session.execute(stmt)).scalars().all())

    # -- internals ---------------------------------------------------------

    async def _transition(
        self,
        session: AsyncSession,
        attempt: PaymentAttempt,
        new_status: PaymentStatus,
        *,
        source: PaymentEventType,
        failure_reason: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> bool:
        """Move a pending attempt to ``new_status``; report whether this call won."""

        now = self._now()
        values: dict[str, Any] = {"status": new_status, "updated_at": now}
        if new_status is PaymentStatus.COMPLETED:
            values["completed_at"] = now
        elif new_status is PaymentStatus.FAILED:
            values["failure_reason"] = _truncate(
                failure_reason or "Payment failed at provider"
            )

        result = await session.execute(
            update(PaymentAttempt)
            .where(
                PaymentAttempt.id == attempt.id,
                PaymentAttempt.status == PaymentStatus.PENDING,
            )
            .values(**values)
            .returning(PaymentAttempt.id)
            .execution_options(synchronize_session=False)
        )
        won = result.scalar_one_or_none() is not None
        await session.refresh(attempt)

        if won:
            metrics_service.record_transition(
                source.value,
                new_status.value,
                amount=attempt.amount,
                currency=attempt.currency,
            )
            await self._notifier.notify(attempt, new_status, context or {})
        return won

    async def _ensure_activated(
        self, session: AsyncSession, attempt: PaymentAttempt
    ) -> ActivationResult | None:
        # A completed attempt is normally activated in the same transaction as
        # its transition; this covers rows completed before activation existed.
        if attempt.status is not PaymentStatus.COMPLETED or attempt.activated_at:
            return None
        activation = await self._ledger.activate(session, attempt.id)
        await session.refresh(attempt)
        return activation

    async def _fail_initiation(
        self,
        session: AsyncSession,
        attempt: PaymentAttempt,
        reason: str,
        response: dict[str, Any],
    ) -> None:
        attempt.status = PaymentStatus.FAILED
        attempt.failure_reason = _truncate(reason)
        attempt.provider_response = response
        session.add(
            PaymentEvent(
                payment_id=attempt.id,
                event_type=PaymentEventType.REQUEST,
                provider_status=PaymentStatus.FAILED.value,
                data={"response": response},
                note="Charge rejected by provider",
            )
        )
        await session.flush()
        metrics_service.record_transition(
            PaymentEventType.REQUEST.value, PaymentStatus.FAILED.value
        )
        await self._notifier.notify(attempt, PaymentStatus.FAILED, response)

    def _build_charge_payload(
        self, user: User, attempt: PaymentAttempt, product: ResolvedProduct
    ) -> ChargeRequestPayload:
        metadata: ChargeMetadataPayload = {
            "payment_id": str(attempt.id),
            "user_id": user.id,
            "product_kind": product.kind.value,
            "product_code": product.code,
            "credits": product.credits,
        }
        if product.kind is ProductKind.PLAN and product.billing_period is not None:
            metadata["plan_key"] = product.code
            metadata["billing_period"] = product.billing_period.value

        payload: ChargeRequestPayload = {
            "amount": attempt.amount,
            "currency": attempt.currency,
            "phone_number": attempt.phone_number,
            "description": product.description,
            "callback_url": self._settings.snippe_callback_url,
            "metadata": metadata,
            "customer_email": user.email,
            "customer_name": user.display_name,
        }
        return payload

    def _require_gateway(self) -> PaymentGateway:
        if self._gateway is None:
            raise PaymentConfigurationError("Snippe API key is not configured")
        return self._gateway

    @staticmethod
    def _now() -> datetime:
        return datetime.now(UTC)


def _truncate(value: str) -> str:
    return value[:_FAILURE_REASON_MAX_LENGTH]
