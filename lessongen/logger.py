"""Logging configuration for the lesson generation engine."""

import logging
import sys
from typing import Any

import structlog

from lessongen.config import get_settings

_SHARED_PROCESSORS = [
    structlog.stdlib.filter_by_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.UnicodeDecoder(),
]


def setup_logging() -> None:
    """Configure structured logging for the application."""
    settings = get_settings()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper()),
    )

    if settings.log_format == "json":
        timestamper = structlog.processors.TimeStamper(fmt="iso")
        renderer = structlog.processors.JSONRenderer()
    else:
        timestamper = structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S")
        renderer = ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            *_SHARED_PROCESSORS,
            timestamper,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


class ConsoleRenderer:
    """Console renderer that keeps lesson and field ids next to the event."""

    LEVEL_COLORS = {
        "debug": "\033[36m",
        "info": "\033[32m",
        "warning": "\033[33m",
        "error": "\033[31m",
        "critical": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, colors: bool = True):
        self.colors = colors

    def __call__(self, logger, name, event_dict):
        level = event_dict.pop("level", "info")
        timestamp = event_dict.pop("timestamp", "")
        logger_name = event_dict.pop("logger", "")
        event = event_dict.pop("event", "")

        if self.colors:
            color = self.LEVEL_COLORS.get(level.lower(), "")
            level_str = f"{color}{level.upper()}{self.RESET}"
        else:
            level_str = level.upper()

        scope = [
            f"{key}={event_dict.pop(key)}"
            for key in ("lesson_id", "field_id")
            if key in event_dict
        ]
        prefix = f"[{' '.join(scope)}] " if scope else ""

        line = f"{timestamp} {level_str} {logger_name}: {prefix}{event}"
        if event_dict:
            line += f" {event_dict}"
        return line


def get_logger(name: str) -> Any:
    """Get a configured logger instance."""
    return structlog.get_logger(name)


def bind_lesson_context(lesson_id: str) -> None:
    """Attach the lesson id to every log line emitted by the current task."""
    structlog.contextvars.bind_contextvars(lesson_id=lesson_id)
