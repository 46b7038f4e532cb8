"""structlog setup for the engine.

Every module logs through ``get_logger(__name__)`` with event-style names
(``challenge_transitioned``) and key/value context. Request-scoped keys
live in contextvars so service code never passes them around.
"""

import logging
import sys
from typing import Any

import structlog

_REQUEST_KEYS = ("request_id", "user_id", "path")


def _add_service(service_name: str) -> structlog.types.Processor:
    def processor(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict

    return processor


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    service_name: str = "challenge-engine",
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Log level name
        json_format: JSON lines when True, coloured console output otherwise
        service_name: Value of the ``service`` key on every line
    """
    log_level = logging.getLevelName(level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_service(service_name),
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if json_format:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_request_context(request_id: str, user_id: str | None = None, **kwargs: Any) -> None:
    """Attach request-scoped keys to every log line until cleared.

    The engine has no ambient "current user"; callers bind the explicit
    ``user_id`` they were given.
    """
    context: dict[str, Any] = {"request_id": request_id, **kwargs}
    if user_id:
        context["user_id"] = user_id
    structlog.contextvars.bind_contextvars(**context)


def clear_request_context() -> None:
    structlog.contextvars.unbind_contextvars(*_REQUEST_KEYS)
