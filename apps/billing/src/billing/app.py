from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

import billing.ledger.models  # noqa: F401 - register ledger tables with SQLAlchemy metadata
import billing.payments.models  # noqa: F401 - register payment tables with SQLAlchemy metadata
from billing.api.middleware import CorrelationIdMiddleware, RequestLoggingMiddleware
from billing.api.routes import load_routers
from billing.core.config import Settings, get_settings
from billing.core.lifespan import create_lifespan
from billing.core.logging import configure_logging
from billing.observability import configure_sentry, metrics_service


def _register_middlewares(app: FastAPI, settings: Settings) -> None:
    if settings.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Added last so it runs first and the request id is bound for the access log.
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)


def _register_routers(app: FastAPI) -> None:
    for router in load_routers():
        app.include_router(router)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    # Configure Sentry first to capture all initialization errors
    configure_sentry(settings.sentry, default_environment=settings.environment.value)

    app = FastAPI(
        title=settings.project_name,
        description=settings.project_description,
        version=settings.project_version,
        # Interactive docs stay off in production.
        docs_url=None if settings.is_production else settings.docs_url,
        redoc_url=None if settings.is_production else settings.redoc_url,
        openapi_url=settings.openapi_url,
        default_response_class=ORJSONResponse,
        lifespan=create_lifespan(settings),
    )

    app.state.settings = settings
    app.openapi_tags = [
        {"name": "health", "description": "Service health check operations"},
        {
            "name": "payments",
            "description": (
                "Mobile money checkout for credit packages and subscription plans."
            ),
        },
        {
            "name": "webhooks",
            "description": "Signed status notifications pushed by the payment provider.",
        },
        {
            "name": "ledger",
            "description": "Credit balance, subscription state and ledger history.",
        },
    ]

    metrics_service.instrument_app(app, settings.prometheus)

    _register_middlewares(app, settings)
    _register_routers(app)

    return app
