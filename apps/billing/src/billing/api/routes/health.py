from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

import structlog
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from billing.core.config import Settings, get_settings
from billing.db.dependencies import get_db_session
from billing.observability import add_breadcrumb

router = APIRouter(prefix="/health", tags=["health"])
logger = structlog.get_logger(__name__)


class DependencyStatus(BaseModel):
    """Health status for a downstream dependency."""

    status: Literal["ok", "error"]
    error: str | None = None


class HealthResponse(BaseModel):
    """Health check response schema."""

    status: Literal["ok", "error"]
    service: str
    version: str
    timestamp: datetime
    environment: str
    metrics_enabled: bool = False
    metrics_endpoint: str | None = None
    error_tracking_enabled: bool = False
    payments_configured: bool = False
    webhooks_configured: bool = False

    model_config = ConfigDict(extra="ignore")


class DetailedHealthResponse(HealthResponse):
    """Detailed health check payload including dependency information."""

    redis: DependencyStatus | None = None
    database: DependencyStatus | None = None


def _build_health_response(settings: Settings) -> dict[str, object]:
    return {
        "status": "ok",
        "service": settings.project_name,
        "version": settings.project_version,
        "timestamp": datetime.now(UTC),
        "environment": settings.environment.value,
        "metrics_enabled": settings.prometheus.enabled,
        "metrics_endpoint": (
            settings.prometheus.metrics_path if settings.prometheus.enabled else None
        ),
        "error_tracking_enabled": settings.sentry.enabled,
        "payments_configured": settings.snippe.api_key is not None,
        "webhooks_configured": settings.snippe.webhook_secret is not None,
    }


@router.get("", summary="Service health check", response_model=HealthResponse)
async def health(settings: Settings = Depends(get_settings)) -> dict[str, object]:
    """Return a lightweight health payload for liveness probes."""

    add_breadcrumb(category="health", message="Health check requested")
    payload = _build_health_response(settings)
    logger.debug("health_status", status=payload["status"])
    return payload


@router.get(
    "/detailed",
    summary="Detailed health check with dependencies",
    response_model=DetailedHealthResponse,
)
async def detailed_health(
    request: Request,
    settings: Settings = Depends(get_settings),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, object]:
    """Return health status including database and Redis round trips."""

    payload = _build_health_response(settings)

    try:
        await session.execute(text("SELECT 1"))
        payload["database"] = DependencyStatus(status="ok")
    except Exception as exc:  # noqa: BLE001 - reported in the payload
        logger.error("database_health_check_failed", error=str(exc))
        payload["database"] = DependencyStatus(status="error", error=str(exc))

    redis = getattr(request.app.state, "redis", None)
    if redis is None:
        payload["redis"] = DependencyStatus(status="error", error="not initialised")
    else:
        try:
            await redis.ping()
            payload["redis"] = DependencyStatus(status="ok")
        except Exception as exc:  # noqa: BLE001 - reported in the payload
            logger.error("redis_health_check_failed", error=str(exc))
            payload["redis"] = DependencyStatus(status="error", error=str(exc))

    if any(
        isinstance(dep, DependencyStatus) and dep.status == "error"
        for dep in (payload["database"], payload["redis"])
    ):
        payload["status"] = "error"
    return payload
