"""Process-wide async engine and session factory.

The engine is created lazily on first use (normally by the application
lifespan) and shared by request handlers, the status poller and webhook
processing. Tests swap ``_ENGINE``/``_SESSION_FACTORY`` for a SQLite-backed pair.
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from billing.core.config import DatabaseSettings, Settings, get_settings

logger = structlog.get_logger(__name__)

_ENGINE: AsyncEngine | None = None
_SESSION_FACTORY: async_sessionmaker[AsyncSession] | None = None


def _engine_options(database: DatabaseSettings) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": database.echo, "pool_pre_ping": True}
    if make_url(database.dsn).get_backend_name() != "sqlite":
        options.update(
            pool_size=database.pool_size,
            max_overflow=database.max_overflow,
            pool_recycle=database.pool_recycle_seconds,
        )
    return options


def get_engine(settings: Settings | None = None) -> AsyncEngine:
    global _ENGINE
    if _ENGINE is None:
        database = (settings or get_settings()).database
        _ENGINE = create_async_engine(database.dsn, **_engine_options(database))
        logger.info(
            "database_engine_created",
            host=_ENGINE.url.host,
            database=_ENGINE.url.database,
        )
    return _ENGINE


def get_session_factory(
    settings: Settings | None = None,
) -> async_sessionmaker[AsyncSession]:
    global _SESSION_FACTORY
    if _SESSION_FACTORY is None:
        # Payment rows are read back after commit to build responses.
        _SESSION_FACTORY = async_sessionmaker(
            get_engine(settings),
            expire_on_commit=False,
            autoflush=False,
        )
    return _SESSION_FACTORY


async def dispose_engine() -> None:
    global _ENGINE, _SESSION_FACTORY

    _SESSION_FACTORY = None
    if _ENGINE is None:
        return

    await _ENGINE.dispose()
    _ENGINE = None
    logger.info("database_engine_disposed")
