"""Event logging for the socket server.

Server code logs named events ("connection.open", "rpc.handler_error",
"server.shutdown.complete") through ``log_event`` and ``timed_operation``.
Each event carries its fields on the record: numbers go to ``metrics``,
everything else to ``metadata``. With ``--structured-logs`` the CLI
installs StructuredFormatter, which writes one JSON object per line;
otherwise the plain format shows only the message.

Usage:
    from toolwire.observability.logging import log_event, timed_operation

    log_event(logger, "connection.open", connection_id=3, address="127.0.0.1")

    with timed_operation(logger, "server.shutdown", port=13378) as ctx:
        ctx["closed"] = await close_all()
"""

from __future__ import annotations

import json
import logging
import time
from contextlib import contextmanager
from typing import Any

PLAIN_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

LEVELS: dict[str, int] = {
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


class StructuredFormatter(logging.Formatter):
    """One JSON object per record.

    Always has timestamp, level, logger and message; event, metrics and
    metadata appear when the record carries them, and error when it has
    exception info.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for attr, key in (("event_type", "event"), ("metrics", "metrics"), ("metadata", "metadata")):
            value = getattr(record, attr, None)
            if value:
                entry[key] = value

        if record.exc_info and record.exc_info[1]:
            entry["error"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
            }

        return json.dumps(entry, default=str)


def _is_metric(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _split_fields(fields: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    """Partition event fields into (metrics, metadata)."""
    metrics = {k: v for k, v in fields.items() if _is_metric(v)}
    metadata = {k: v for k, v in fields.items() if not _is_metric(v)}
    return metrics, metadata


def log_event(
    log: logging.Logger,
    event_type: str,
    level: int = logging.INFO,
    message: str | None = None,
    **fields: Any,
) -> None:
    """Log a named event.

    Args:
        log: Logger to emit on.
        event_type: Dotted event name, e.g. "connection.close".
        level: Log level.
        message: Human-readable text. Defaults to ``event_type``.
        **fields: Event fields, split into metrics and metadata.
    """
    metrics, metadata = _split_fields(fields)
    log.log(
        level,
        message or event_type,
        extra={
            "event_type": event_type,
            "metrics": metrics or None,
            "metadata": metadata or None,
        },
    )


@contextmanager
def timed_operation(
    log: logging.Logger,
    operation: str,
    level: int = logging.INFO,
    **extra: Any,
) -> Any:
    """Log ``<operation>.start`` and then ``.complete`` or ``.failed`` with latency.

    Yields a dict; values put in it during the block are logged with the
    completion event alongside ``extra``. Exceptions are logged and re-raised.
    """
    ctx: dict[str, Any] = {}
    start = time.perf_counter()
    log.debug("%s started", operation, extra={"event_type": f"{operation}.start", "metadata": extra})
    try:
        yield ctx
    except Exception:
        elapsed_ms = round((time.perf_counter() - start) * 1000, 1)
        log.error(
            "%s failed after %.1fms",
            operation,
            elapsed_ms,
            exc_info=True,
            extra={
                "event_type": f"{operation}.failed",
                "metrics": {"latency_ms": elapsed_ms},
                "metadata": extra,
            },
        )
        raise

    elapsed_ms = round((time.perf_counter() - start) * 1000, 1)
    metrics, metadata = _split_fields({**extra, **ctx})
    log.log(
        level,
        "%s completed in %.1fms",
        operation,
        elapsed_ms,
        extra={
            "event_type": f"{operation}.complete",
            "metrics": {"latency_ms": elapsed_ms, **metrics},
            "metadata": metadata,
        },
    )


def resolve_level(level: str | int) -> int:
    """Map a level name ("debug", "info", ...) or number to a logging level."""
    if isinstance(level, int):
        return level
    try:
        return LEVELS[level.lower()]
    except KeyError:
        raise ValueError(f"Unknown log level: {level!r}") from None


def configure_logging(level: str | int = logging.INFO, structured: bool = False) -> None:
    """Install a single stderr handler on the root logger.

    Args:
        level: Root level, as a name or a logging constant.
        structured: Use StructuredFormatter instead of PLAIN_FORMAT.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter() if structured else logging.Formatter(PLAIN_FORMAT))
    root = logging.getLogger()
    root.setLevel(resolve_level(level))
    # Replace existing handlers to avoid duplicate output
    root.handlers = [handler]
