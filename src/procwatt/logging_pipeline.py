"""Structured JSON logging for the sampling daemon.

Records are pushed onto a bounded queue and rendered by a background
listener, so a slow stderr never stalls a polling tick.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
from datetime import datetime, timezone
from queue import Full, Queue
from typing import Iterable
from uuid import uuid4

from typing_extensions import override

LOGGER = logging.getLogger(__name__)

_RESERVED_RECORD_KEYS: frozenset[str] = frozenset(
    (
        "name",
        "msg",
        "message",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
    )
)

DEFAULT_QUEUE_SIZE = 1024


class JsonFormatter(logging.Formatter):
    """Render log records as one JSON object per line."""

    def __init__(self, *, default_run_id: str | None = None) -> None:
        super().__init__()
        self._default_run_id = default_run_id

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - inherited
        exception_text: str | None = None
        if record.exc_info:
            exception_text = self.formatException(record.exc_info)
        elif record.exc_text:
            exception_text = record.exc_text

        context = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_RECORD_KEYS and key != "run_id"
        }

        payload: dict[str, object] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "run_id": getattr(record, "run_id", None) or self._default_run_id,
            "context": context,
        }
        if exception_text:
            payload["exception"] = exception_text

        return json.dumps(payload, default=str)


class BoundedQueueHandler(logging.handlers.QueueHandler):
    """Queue handler that drops records instead of blocking when full."""

    @override
    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except Full:
            self.handleError(record)

    @override
    def handleError(self, record: logging.LogRecord) -> None:
        return


def configure_structured_logging(
    logger: logging.Logger,
    *,
    run_id: str | None = None,
    level: int = logging.INFO,
    queue_size: int = DEFAULT_QUEUE_SIZE,
) -> logging.handlers.QueueListener:
    """Attach JSON output to ``logger`` through a bounded queue.

    Args:
        logger: Target logger, usually the ``procwatt`` package logger.
        run_id: Identifier stamped on every record; random when omitted.
        level: Logging verbosity level.
        queue_size: Records buffered before new ones are dropped.

    Returns:
        The started listener; pass it to :func:`shutdown_listeners` on exit.
    """

    logger.setLevel(level)

    record_queue: Queue[logging.LogRecord] = Queue(maxsize=queue_size)
    logger.addHandler(BoundedQueueHandler(record_queue))

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(JsonFormatter(default_run_id=run_id or str(uuid4())))

    listener = logging.handlers.QueueListener(record_queue, stream_handler)
    listener.start()
    return listener


def shutdown_listeners(listeners: Iterable[logging.handlers.QueueListener]) -> None:
    """Stop queue listeners, logging rather than raising on failure."""

    for listener in listeners:
        try:
            listener.stop()
        except Exception as exc:  # pragma: no cover - shutdown path
            LOGGER.warning("Failed to stop logging listener", exc_info=exc)


__all__ = [
    "BoundedQueueHandler",
    "JsonFormatter",
    "configure_structured_logging",
    "shutdown_listeners",
]
