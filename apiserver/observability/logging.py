from __future__ import annotations

import logging
import sys
from typing import Any, Callable

import structlog


LogSink = Callable[[str], None]

# Loggers that carry operator-facing text lines rather than structured events.
LINE_SOURCES = ("access", "listener")

_CONFIGURED = False


def render_line(logger: Any, method_name: str, event_dict: dict[str, Any]) -> str:
    """``<timestamp> [<source>] <text>``; any bound context is left to the JSON stream."""

    timestamp = event_dict.get("timestamp", "")
    source = event_dict.get("logger", "")
    return f"{timestamp} [{source}] {event_dict.get('event', '')}".lstrip()


def configure_logging(level: int | str = logging.INFO) -> None:
    """Configure structlog + stdlib logging.

    Structured events are rendered as JSON; the access and listener lines go
    out as plain text through their own handler. Safe to call multiple times
    (no-op after first call).
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    json_handler = logging.StreamHandler(sys.stdout)
    json_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.JSONRenderer(ensure_ascii=False),
            ],
            foreign_pre_chain=pre_chain,
        )
    )

    line_handler = logging.StreamHandler(sys.stdout)
    line_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, render_line],
            foreign_pre_chain=pre_chain,
        )
    )

    root = logging.getLogger()
    root.handlers = [json_handler]
    root.setLevel(level)

    for name in LINE_SOURCES:
        logger = logging.getLogger(name)
        logger.handlers = [line_handler]
        logger.propagate = False
        logger.setLevel(level)

    # Keep uvicorn's own loggers consistent with our handler.
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logger = logging.getLogger(name)
        logger.handlers = [json_handler]
        logger.propagate = False
        logger.setLevel(level)

    _CONFIGURED = True


def log_line(message: str, source: str = "access") -> None:
    """Default log sink: one line of operator-facing text."""

    structlog.get_logger(source).info(message)
