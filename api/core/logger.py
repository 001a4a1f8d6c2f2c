"""Structured logging for the renderer, built on structlog.

Modules keep using the standard library API with dotted event names:

    import logging
    logger = logging.getLogger(__name__)
    logger.info("render.batch.started", extra={"design_id": "abc"})

``configure_logging`` routes every stdlib record through structlog's
``ProcessorFormatter``, so ``extra`` fields, request context bound with
``bind_contextvars`` and the service name all land as top-level keys.
Output is JSON with LOG_FORMAT=json and a coloured console otherwise.
"""

import logging
import os
import sys

import structlog
from structlog.types import EventDict, Processor

SERVICE_NAME = "certificate-renderer"

_QUIET_LOGGERS = ("httpx", "httpcore", "urllib3", "uvicorn.access")


def _add_service_name(
    _logger: logging.Logger, _method_name: str, event_dict: EventDict
) -> EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def _drop_color_message(
    _logger: logging.Logger, _method_name: str, event_dict: EventDict
) -> EventDict:
    # uvicorn duplicates its message with ANSI codes under this key
    event_dict.pop("color_message", None)
    return event_dict


def _log_level() -> int:
    level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_name, logging.INFO)


def _renderer() -> Processor:
    if os.environ.get("LOG_FORMAT", "").lower() == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=True, exception_formatter=structlog.dev.plain_traceback
    )


def _pre_chain() -> list[Processor]:
    """Processors applied to both structlog and foreign stdlib records."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        _drop_color_message,
        _add_service_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def configure_logging() -> None:
    """Install the structlog handler on the root logger.

    Safe to call more than once; earlier root handlers are replaced.
    """
    pre_chain = _pre_chain()

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                _renderer(),
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(_log_level())

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_contextvars(**kwargs: object) -> None:
    """Bind request-scoped fields (e.g. design_id) onto every later log line."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_contextvars() -> None:
    structlog.contextvars.clear_contextvars()
