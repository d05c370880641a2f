from __future__ import annotations

from typing import Any, Protocol

import httpx
import structlog
from pydantic import ValidationError

from billing.core.constants import REQUEST_ID_HEADER
from billing.core.logging import get_request_id

from .exceptions import PaymentProviderError, PaymentProviderUnavailableError
from .types import (
    ChargeInitiated,
    ChargeRejected,
    ChargeRequestPayload,
    ChargeResponse,
    PaymentStatusLookup,
)

logger = structlog.get_logger(__name__)


class PaymentGateway(Protocol):
    """Protocol describing the operations required from a mobile money provider."""

    async def initiate_charge(
        self, payload: ChargeRequestPayload, idempotency_key: str
    ) -> ChargeResponse:
        """Start a push charge on the customer's handset."""

    async def fetch_status(self, reference: str) -> PaymentStatusLookup:
        """Return the provider's current view of a charge."""


class SnippeGateway:
    """Asynchronous client for the Snipe.sh payments API.

    Every call is a single attempt bounded by the configured timeout.
    Connectivity problems raise ``PaymentProviderUnavailableError``; HTTP error
    statuses and bodies that do not match the documented shapes raise
    ``PaymentProviderError``.
    """

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("api_key must be provided")
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"X-API-Key": api_key, "Accept": "application/json"},
        )

    async def initiate_charge(
        self, payload: ChargeRequestPayload, idempotency_key: str
    ) -> ChargeResponse:
        body = await self._request(
            "POST",
            "/payments/init",
            json=dict(payload),
            headers={"Idempotency-Key": idempotency_key},
        )
        status = body.get("status")
        try:
            if isinstance(status, str) and status.lower() == "success":
                return ChargeInitiated.model_validate(body)
            return ChargeRejected.model_validate(body)
        except ValidationError as exc:
            raise PaymentProviderError(
                f"Unexpected charge initiation response: {exc.error_count()} invalid field(s)"
            ) from exc

    async def fetch_status(self, reference: str) -> PaymentStatusLookup:
        body = await self._request("GET", f"/payments/{reference}")
        # Some deployments wrap the payment in a ``data`` envelope.
        data = body.get("data")
        if "status" not in body and isinstance(data, dict):
            body = {**data, "envelope": body}
        try:
            return PaymentStatusLookup.model_validate(body)
        except ValidationError as exc:
            raise PaymentProviderError(
                f"Unexpected status lookup response: {exc.error_count()} invalid field(s)"
            ) from exc

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        headers = dict(headers or {})
        if request_id := get_request_id():
            headers[REQUEST_ID_HEADER] = request_id
        try:
            response = await self._client.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException as exc:
            logger.warning("snippe_request_timeout", method=method, path=path)
            raise PaymentProviderUnavailableError("Payment provider timed out") from exc
        except httpx.TransportError as exc:
            logger.warning(
                "snippe_request_unreachable", method=method, path=path, error=str(exc)
            )
            raise PaymentProviderUnavailableError(
                "Payment provider is unreachable"
            ) from exc

        body = _decode(response)
        if response.is_error:
            message = body.get("message") or body.get("error") or response.reason_phrase
            logger.warning(
                "snippe_request_rejected",
                method=method,
                path=path,
                status_code=response.status_code,
                message=message,
            )
            raise PaymentProviderError(
                str(message), status_code=response.status_code
            )
        return body


def _decode(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        if response.is_error:
            return {}
        raise PaymentProviderError(
            "Payment provider returned a non-JSON body",
            status_code=response.status_code,
        ) from None
    if not isinstance(body, dict):
        if response.is_error:
            return {}
        raise PaymentProviderError(
            "Payment provider returned an unexpected body",
            status_code=response.status_code,
        )
    return body
