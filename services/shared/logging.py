"""
Structured logging for the Biomedical Graph Assistant.

structlog renders JSON for deployments and coloured console output for
local runs. Fields that belong to the process (service name) or to one unit
of work (the correlation id of a chat turn or an embedding run) are kept in
structlog's context variables, so every logger in the same task picks them
up through ``merge_contextvars``.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import uuid4

import structlog
from structlog.types import Processor

from services.shared.config import Settings, get_settings

DEFAULT_SERVICE_NAME = "biograph-assistant"

# Held at WARNING so request logs stay readable
_NOISY_LOGGERS = ("urllib3", "botocore", "boto3", "asyncio")


def _processors(log_format: str) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if log_format == "json":
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    return processors


def configure_logging(
    settings: Settings | None = None,
    service_name: str = DEFAULT_SERVICE_NAME,
) -> None:
    """
    Configure structlog and the standard library root logger.

    Level and renderer come from settings (``LOG_LEVEL``, ``LOG_FORMAT``).
    The service name is bound as a context variable so it appears on every
    entry emitted from this context and from tasks started after this call.

    Args:
        settings: Application settings; the cached instance when omitted
        service_name: Value for the ``service`` field
    """
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level)

    structlog.configure(
        processors=_processors(settings.log_format),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    # Bolt driver chatter is only useful when debugging queries
    logging.getLogger("neo4j").setLevel(logging.INFO if level == logging.DEBUG else logging.WARNING)

    structlog.contextvars.bind_contextvars(service=service_name)


@contextmanager
def bound_correlation_id(correlation_id: str | None = None) -> Iterator[str]:
    """
    Bind a correlation id for the duration of one unit of work.

    A fresh uuid is generated when none is given. The previous binding, if
    any, is restored on exit, so entries logged outside the block never
    carry this id.
    """
    correlation_id = correlation_id or str(uuid4())
    with structlog.contextvars.bound_contextvars(correlation_id=correlation_id):
        yield correlation_id


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, typically with ``__name__``."""
    return structlog.get_logger(name)
