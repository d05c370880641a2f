from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from starlette.types import Lifespan

from billing.core.config import Settings
from billing.core.redis import close_redis, init_redis
from billing.db.session import dispose_engine, get_engine
from billing.payments.dependencies import close_payment_dependencies
from billing.security.rate_limiter import RateLimiter


def create_lifespan(settings: Settings) -> Lifespan[FastAPI]:
    logger = structlog.get_logger(__name__).bind(environment=settings.environment)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("application_startup")
        # Initialise pooled resources so they can be reused across requests.
        get_engine(settings)
        redis = await init_redis(settings)
        app.state.redis = redis
        app.state.rate_limiter = RateLimiter(
            redis,
            limit=settings.rate_limit.payment_requests_per_window,
            window_seconds=settings.rate_limit.window_seconds,
        )

        try:
            yield
        finally:
            app.state.rate_limiter = None
            await close_payment_dependencies()
            await close_redis()
            await dispose_engine()
            logger.info("application_shutdown")

    return lifespan
