"""JSON logging configuration for CashWatch API.

One JSON object per line on stdout. Structured fields go under ``context``::

    logger.info("Payout requested", extra={"context": {"payout_id": payout.id}})
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

SERVICE_NAME = "cashwatch-api"

# Third-party loggers that are too chatty at INFO.
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "websockets")


class JSONFormatter(logging.Formatter):
    """Format log records as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "service": SERVICE_NAME,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            log_data["context"] = context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Route every logger to a single JSON handler on stdout."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"cashwatch.{name}")


class LoggerAdapter(logging.LoggerAdapter):
    """Carries a fixed context (chat_id, user_id); a per-call ``context=`` kwarg is merged over it."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = {**self.extra, **(kwargs.pop("context", None) or {})}
        if context:
            kwargs["extra"] = {"context": context}
        return msg, kwargs


def bind(logger: logging.Logger, **context: Any) -> LoggerAdapter:
    """Return logger with context attached to every record it emits."""
    return LoggerAdapter(logger, {key: value for key, value in context.items() if value is not None})
