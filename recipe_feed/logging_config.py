"""Structured logging for the recipe feed service.

Every line is one JSON object carrying the request's execution id, the
component that logged it and any keyword context passed by the caller
(feed URL, cache status, card counts and so on).
"""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

LOGGER_PREFIX = "recipe_feed"

# Client libraries whose request chatter is only wanted at DEBUG
NOISY_LOGGERS = ("botocore", "boto3", "urllib3")


class StructuredFormatter(logging.Formatter):
    """Formats records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "source": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        for attr in ("execution_id", "component"):
            if hasattr(record, attr):
                log_entry[attr] = getattr(record, attr)

        context = getattr(record, "context", None)
        if isinstance(context, dict):
            for key, value in context.items():
                log_entry.setdefault(key, value)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ExecutionLogger:
    """Logger bound to one request's execution id and a component name."""

    def __init__(self, execution_id: str, component: str = "main"):
        self.execution_id = execution_id
        self.component = component
        self.logger = logging.getLogger(f"{LOGGER_PREFIX}.{component}")
        self.started_at: datetime | None = None

    def log(self, level: int, message: str, exc_info: bool = False, **context) -> None:
        self.logger.log(
            level,
            message,
            exc_info=exc_info,
            extra={
                "execution_id": self.execution_id,
                "component": self.component,
                "context": context,
            },
        )

    def debug(self, message: str, **context) -> None:
        self.log(logging.DEBUG, message, **context)

    def info(self, message: str, **context) -> None:
        self.log(logging.INFO, message, **context)

    def warning(self, message: str, **context) -> None:
        self.log(logging.WARNING, message, **context)

    def error(self, message: str, **context) -> None:
        self.log(logging.ERROR, message, **context)

    def exception(self, message: str, **context) -> None:
        """Log at ERROR with the active traceback."""
        self.log(logging.ERROR, message, exc_info=True, **context)

    def log_request_start(self, method: str, path: str, request_id: str) -> None:
        self.started_at = datetime.now(UTC)
        self.info(
            f"{method} {path}",
            http_method=method,
            path=path,
            lambda_request_id=request_id,
        )

    def log_request_end(self, status_code: int, **context) -> None:
        """Log the response status and, if the start was logged, the duration."""
        duration_ms = None
        if self.started_at:
            elapsed = datetime.now(UTC) - self.started_at
            duration_ms = round(elapsed.total_seconds() * 1000, 1)
        self.info(
            f"Responded {status_code}",
            status_code=status_code,
            duration_ms=duration_ms,
            **context,
        )

    def log_feed_parsed(self, feed_url: str, items_count: int) -> None:
        self.info(
            f"Parsed {items_count} items from feed",
            feed_url=feed_url,
            items_count=items_count,
        )

    def log_cache_decision(self, feed_url: str, status: str, cards: int) -> None:
        """Log which service path answered a request."""
        self.info(
            f"Served {cards} cards from {status} path",
            feed_url=feed_url,
            cache_status=status,
            cards_returned=cards,
        )

    def log_request_metrics(self, metrics: dict[str, Any]) -> None:
        self.info("Request metrics", metrics=metrics)


def setup_structured_logging(log_level: str = "INFO") -> None:
    """Route all logging to stdout as JSON at the given level.

    Raises:
        ValueError: If log_level is not a standard level name
    """
    level = getattr(logging, log_level.upper(), None)
    if not isinstance(level, int):
        raise ValueError(f"Unsupported log level: {log_level}")

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(StructuredFormatter())
    root_logger.addHandler(console_handler)

    logging.getLogger(LOGGER_PREFIX).setLevel(level)
    client_level = level if level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(client_level)


def create_execution_logger(
    component: str, execution_id: str | None = None
) -> ExecutionLogger:
    """Create a logger for `component`, generating an execution id if needed."""
    if not execution_id:
        execution_id = f"exec_{datetime.now(UTC).strftime('%Y%m%d_%H%M%S_%f')}"
    return ExecutionLogger(execution_id, component)
