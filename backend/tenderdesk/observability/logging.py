from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.contextvars import merge_contextvars


class _StaticFields:
    """Stamp every event with the service name and deployment environment."""

    def __init__(self, **fields: Any):
        self._fields = {k: v for k, v in fields.items() if v}

    def __call__(self, _: logging.Logger, __: str, event_dict: dict) -> dict:
        for k, v in self._fields.items():
            event_dict.setdefault(k, v)
        return event_dict


_CONFIGURED = False


def configure_logging(
    *,
    level: str | int = "INFO",
    service: str = "tenderdesk",
    environment: str | None = None,
) -> None:
    """
    JSON logs on stdout for both structlog and stdlib loggers.

    Context bound with `structlog.contextvars` (request_id from the request
    middleware, tender_id from tender operations) is merged into every event.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    shared: list[Any] = [
        merge_contextvars,
        _StaticFields(service=service, environment=environment),
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=shared,
        )
    )
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(str(level).upper() if isinstance(level, str) else level)

    # uvicorn access/error lines go through the same JSON formatter.
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uv = logging.getLogger(name)
        uv.handlers = []
        uv.propagate = True

    structlog.configure(
        processors=[
            *shared,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _CONFIGURED = True


def get_logger(name: str | None = None):
    return structlog.get_logger(name)
