"""kanbanterm logging configuration.

Modules log through `structlog.get_logger(__name__)` with an event name plus
key/value context. This routes structlog through stdlib logging so library
loggers (httpx, websockets) share the same handler.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

import structlog


def setup_logging(level: Optional[str] = None) -> None:
    """Configure kanbanterm logging.

    Args:
        level: Optional override for `KANBANTERM_LOG_LEVEL` (default INFO).
    """
    if level:
        os.environ["KANBANTERM_LOG_LEVEL"] = level
    resolved = os.environ.get("KANBANTERM_LOG_LEVEL", "INFO").upper()
    numeric_level = getattr(logging, resolved, logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=numeric_level, force=True)
    # Frame-level chatter from the websocket library is never useful at INFO
    logging.getLogger("websockets").setLevel(max(numeric_level, logging.WARNING))

    shared_processors: list[structlog.typing.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if sys.stderr.isatty():
        output_processors: list[structlog.typing.Processor] = [structlog.dev.ConsoleRenderer(colors=True)]
    else:
        output_processors = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=shared_processors + output_processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
