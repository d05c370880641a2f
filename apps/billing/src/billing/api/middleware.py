from __future__ import annotations

import time
import uuid
from typing import Any

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from billing.core.constants import REQUEST_ID_HEADER
from billing.core.logging import bind_request_context, clear_request_context

_USER_HEADER = "X-User-Id"
_EVENT_HEADER = "X-Webhook-Event"
_QUIET_PATHS = frozenset({"/health", "/metrics"})


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Ensure every request/response pair carries a correlation identifier."""

    def __init__(self, app: ASGIApp, header_name: str = REQUEST_ID_HEADER) -> None:
        super().__init__(app)
        self._header_name = header_name

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get(self._header_name) or uuid.uuid4().hex
        bind_request_context(request_id, path=request.url.path)
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        finally:
            clear_request_context()

        response.headers[self._header_name] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Emit one access log line per request, tagged with caller and provider event."""

    def __init__(self, app: ASGIApp) -> None:
        super().__init__(app)
        self._logger = structlog.get_logger("billing.request")

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in _QUIET_PATHS:
            return await call_next(request)

        start = time.perf_counter()
        fields = _request_fields(request)

        try:
            response = await call_next(request)
        except Exception:
            self._logger.exception(
                "request_failed", duration_ms=_elapsed_ms(start), **fields
            )
            raise

        log = self._logger.warning if response.status_code >= 500 else self._logger.info
        log(
            "request_completed",
            status_code=response.status_code,
            duration_ms=_elapsed_ms(start),
            **fields,
        )
        return response


def _request_fields(request: Request) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "method": request.method,
        "path": request.url.path,
        "client": request.client.host if request.client is not None else "unknown",
    }
    # Header values are logged as sent; they are not authenticated here.
    if user_id := request.headers.get(_USER_HEADER):
        fields["user_id"] = user_id
    if event := request.headers.get(_EVENT_HEADER):
        fields["provider_event"] = event
    return fields


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)
