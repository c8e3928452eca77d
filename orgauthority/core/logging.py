from __future__ import annotations

import logging
import logging.config
from typing import Any, Dict, MutableMapping

import structlog

from .settings import settings

REQUEST_CONTEXT_KEYS = ("request_id", "locale", "session_id", "user_id")


def add_service_context(
    _: Any, __: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    event_dict.setdefault("service", settings.app_name)
    event_dict.setdefault("environment", settings.environment)
    return event_dict


def _shared_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        add_service_context,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]


def get_logging_config() -> Dict[str, Any]:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structlog": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processor": structlog.processors.JSONRenderer(),
                # uvicorn and SQLAlchemy records carry the request context as well
                "foreign_pre_chain": [structlog.stdlib.add_logger_name, *_shared_processors()],
            }
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "structlog",
            }
        },
        "root": {
            "level": settings.log_level,
            "handlers": ["default"],
        },
        "loggers": {
            "sqlalchemy.engine": {"level": "INFO" if settings.debug else "WARNING"},
            "uvicorn.access": {"level": "WARNING"},
        },
    }


def configure_logging() -> None:
    logging.config.dictConfig(get_logging_config())
    structlog.configure(
        processors=[
            *_shared_processors(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def bind_request_context(**values: Any) -> None:
    """Attach per-request fields to every event logged until the request ends."""

    unknown = set(values) - set(REQUEST_CONTEXT_KEYS)
    if unknown:
        raise ValueError(f"Unsupported log context keys: {sorted(unknown)}")
    structlog.contextvars.bind_contextvars(
        **{key: value for key, value in values.items() if value is not None}
    )


def clear_request_context() -> None:
    structlog.contextvars.unbind_contextvars(*REQUEST_CONTEXT_KEYS)


logger = structlog.get_logger()
