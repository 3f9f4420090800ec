"""Structlog setup for the plan engine.

One processor chain serves both structlog loggers and stdlib loggers (uvicorn,
SQLAlchemy, the database drivers), so every line comes out in the same format:
JSON in production, ConsoleRenderer when debugging. Each event carries the
service name and, inside a request, the X-Request-ID correlation id.
Operation context (operation, session_id, plan_id) is bound through
structlog.contextvars by the operation dispatcher.
"""

import logging
import logging.config

import structlog
from asgi_correlation_id.context import correlation_id

SERVICE_NAME = "plan-engine"

# Chatty third-party loggers kept at WARNING unless SQL echo is requested
_QUIET_LOGGERS = ("uvicorn.access", "aiosqlite", "asyncpg")


def add_correlation_id(logger, method, event_dict):
    """Copy the request's correlation id into the event, if one is set."""
    cid = correlation_id.get(None)
    if cid:
        event_dict.setdefault("correlation_id", cid)
    return event_dict


def add_service_name(logger, method, event_dict):
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def _logger_levels(sql_echo: bool) -> dict:
    loggers = {name: {"level": "WARNING"} for name in _QUIET_LOGGERS}
    if sql_echo:
        # Own handler so SQLAlchemy's echo does not attach a second one
        loggers["sqlalchemy.engine.Engine"] = {"level": "INFO", "handlers": ["default"], "propagate": False}
    else:
        loggers["sqlalchemy.engine"] = {"level": "WARNING"}
    return loggers


def configure_structlog(log_level: str = "INFO", json_logs: bool = True, sql_echo: bool = False) -> None:
    """Configure structlog and route stdlib logging through the same processors.

    Must run before modules that log at import time, since loggers are cached
    on first use.

    Args:
        log_level: Root log level ("DEBUG", "INFO", "WARNING", "ERROR")
        json_logs: JSON lines when True, ConsoleRenderer otherwise
        sql_echo: Emit SQLAlchemy statement logs at INFO
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_service_name,
        add_correlation_id,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_logs:
        render_chain = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        render_chain = [structlog.dev.ConsoleRenderer()]

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structlog": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processors": [structlog.stdlib.ProcessorFormatter.remove_processors_meta, *render_chain],
                "foreign_pre_chain": shared_processors,
            },
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "structlog",
                "stream": "ext://sys.stdout",
            },
        },
        "root": {"handlers": ["default"], "level": log_level},
        "loggers": _logger_levels(sql_echo),
    })

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
