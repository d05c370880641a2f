from __future__ import annotations

import logging
import logging.config
from contextvars import ContextVar
from threading import Lock
from typing import Any

import structlog
import structlog.contextvars
import structlog.stdlib

from billing.core.config import Settings
from billing.core.constants import REQUEST_ID_CTX_KEY, SERVICE_NAME

_LOGGING_INITIALISED = False
_LOGGING_LOCK = Lock()
_REQUEST_ID_CTX: ContextVar[str | None] = ContextVar(REQUEST_ID_CTX_KEY, default=None)

_QUIET_LOGGERS = ("uvicorn.error", "uvicorn.access", "httpx")


def _resolve_level(level: str) -> int:
    resolved = logging.getLevelName(level.upper())
    if isinstance(resolved, str):
        return logging.INFO
    return int(resolved)


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def configure_logging(settings: Settings) -> None:
    """Configure structlog + stdlib logging exactly once per process."""

    global _LOGGING_INITIALISED
    if _LOGGING_INITIALISED:
        return

    with _LOGGING_LOCK:
        if _LOGGING_INITIALISED:
            return

        level = _resolve_level(settings.log_level)
        renderer: structlog.types.Processor = (
            structlog.dev.ConsoleRenderer()
            if settings.is_development and settings.debug
            else structlog.processors.JSONRenderer()
        )

        structlog.configure(
            processors=[
                *_shared_processors(),
                structlog.processors.dict_tracebacks,
                renderer,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

        loggers: dict[str, dict[str, Any]] = {
            "": {"handlers": ["default"], "level": level, "propagate": True},
        }
        for name in _QUIET_LOGGERS:
            loggers[name] = {
                "handlers": ["default"],
                "level": max(level, logging.WARNING) if name == "httpx" else level,
                "propagate": False,
            }

        logging.config.dictConfig(
            {
                "version": 1,
                "disable_existing_loggers": False,
                "formatters": {
                    "structlog": {
                        "()": structlog.stdlib.ProcessorFormatter,
                        "processors": [
                            *_shared_processors(),
                            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                            renderer,
                        ],
                    }
                },
                "handlers": {
                    "default": {
                        "class": "logging.StreamHandler",
                        "formatter": "structlog",
                        "level": level,
                    }
                },
                "loggers": loggers,
            }
        )

        structlog.contextvars.bind_contextvars(service=SERVICE_NAME)
        _LOGGING_INITIALISED = True


def bind_context(**kwargs: Any) -> None:
    structlog.contextvars.bind_contextvars(**kwargs)


def bind_request_context(request_id: str, **kwargs: Any) -> None:
    _REQUEST_ID_CTX.set(request_id)
    bind_context(**{REQUEST_ID_CTX_KEY: request_id, **kwargs})


def clear_request_context() -> None:
    _REQUEST_ID_CTX.set(None)
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=SERVICE_NAME)


def get_request_id(default: str | None = None) -> str | None:
    return _REQUEST_ID_CTX.get(default)
