from __future__ import annotations

import logging
import time
from logging.config import dictConfig
from typing import Iterable, Sequence

from settings import get_settings

_DEFAULT_EXTRA_KEYS = (
    "run_id",
    "mode",
    "output_format",
    "sink_index",
    "file_path",
    "reason",
    "status",
    "batch_count",
    "reading_count",
    "processing_ms",
)

# Loggers owned by this project; everything else stays at the root level.
_PROJECT_LOGGERS = ("app", "cli", "datastore", "services", "sinks")

_configured = False


class ContextualFormatter(logging.Formatter):
    """Append known ``extra`` fields to the message as ``key=value`` pairs."""

    converter = time.gmtime

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        style: str = "%",
        extra_keys: Iterable[str] | None = None,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt, style=style)
        self._extra_keys: Sequence[str] = tuple(extra_keys or _DEFAULT_EXTRA_KEYS)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context_parts: list[str] = []
        for key in self._extra_keys:
            value = getattr(record, key, None)
            if value is None:
                continue
            context_parts.append(f"{key}={value}")
        if not context_parts:
            return message
        context = " ".join(context_parts)
        # Keep tracebacks after the context suffix.
        head, sep, tail = message.partition("\n")
        return f"{head} | {context}{sep}{tail}"


def configure_logging(level: str | int | None = None, stream: str = "ext://sys.stderr") -> None:
    """Configure application-wide logging with contextual formatting.

    Log output goes to ``stream`` (stderr by default) so that the CLI can keep
    stdout for its report.
    """
    global _configured
    if _configured:
        return

    settings = get_settings()
    log_level = level if level is not None else settings.log_level

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "contextual": {
                    "()": "logging_config.ContextualFormatter",
                    "fmt": "%(asctime)sZ | %(levelname)s | %(threadName)s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S",
                    "style": "%",
                    "extra_keys": list(_DEFAULT_EXTRA_KEYS),
                }
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "level": log_level,
                    "formatter": "contextual",
                    "stream": stream,
                }
            },
            "loggers": {
                name: {"level": log_level, "propagate": True} for name in _PROJECT_LOGGERS
            },
            "root": {"handlers": ["default"], "level": log_level},
        }
    )

    _configured = True
    logging.getLogger(__name__).debug("Logging configured", extra={"status": log_level})
