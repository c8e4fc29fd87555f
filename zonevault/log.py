"""
Logging setup: rich console output or one JSON object per line.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER = "zonevault"


class ContextFilter(logging.Filter):
    """Guarantees record.context always exists."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "context"):
            record.context = None
        return True


class JsonFormatter(logging.Formatter):
    """Structured JSON formatter for machine-parsed logs."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "module": record.name,
            "msg": record.getMessage(),
        }

        if record.context:
            payload["context"] = record.context

        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    console: Optional[Console] = None,
) -> logging.Logger:
    """
    Configure the package logger. Safe to call more than once.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ...)
        json_format: Emit JSON lines instead of rich console output
        console: Console for rich output (stderr by default)

    Returns:
        The package root logger
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    if json_format:
        handler: logging.Handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
    else:
        handler = RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))

    handler.addFilter(ContextFilter())
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def log_event(logger: logging.Logger, level: int, msg: str, **context) -> None:
    """Log with a structured context payload (rendered by JsonFormatter)."""
    logger.log(level, msg, extra={"context": context})
