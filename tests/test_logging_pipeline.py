"""Tests for structured logging pipeline utilities."""

from __future__ import annotations

import io
import json
import logging
import sys
from logging.handlers import QueueListener
from queue import Queue
from typing import Any, cast

import pytest

from procwatt import logging_pipeline


def test_configure_structured_logging_emits_json() -> None:
    """Configure structured logging and verify JSON payloads are emitted."""

    logger = logging.getLogger("procwatt-logging-test")
    listener = logging_pipeline.configure_structured_logging(
        logger, run_id="run-123", level=logging.INFO
    )

    assert listener.handlers
    stream_handler = cast(logging.StreamHandler[Any], listener.handlers[0])
    buffer = io.StringIO()
    stream_handler.setStream(buffer)

    logger.info("tick", extra={"pid": 42, "process_name": "nginx"})
    logging_pipeline.shutdown_listeners([listener])

    payload = json.loads(buffer.getvalue().strip())
    assert payload["message"] == "tick"
    assert payload["run_id"] == "run-123"
    assert payload["level"] == "INFO"
    assert payload["context"] == {"pid": 42, "process_name": "nginx"}


def test_configure_structured_logging_generates_run_id() -> None:
    """When the run ID is omitted a random identifier is emitted."""

    logger = logging.getLogger("procwatt-auto-run")
    listener = logging_pipeline.configure_structured_logging(logger)

    stream_handler = cast(logging.StreamHandler[Any], listener.handlers[0])
    buffer = io.StringIO()
    stream_handler.setStream(buffer)

    logger.info("auto-run")
    logging_pipeline.shutdown_listeners([listener])

    payload = json.loads(buffer.getvalue())
    assert isinstance(payload["run_id"], str) and payload["run_id"]
    assert payload["message"] == "auto-run"


def test_exceptions_are_rendered() -> None:
    formatter = logging_pipeline.JsonFormatter(default_run_id="r")
    try:
        raise ValueError("bad sample")
    except ValueError:
        record = logging.LogRecord(
            "procwatt", logging.ERROR, __file__, 1, "failed", None, None
        )
        record.exc_info = sys.exc_info()

    payload = json.loads(formatter.format(record))

    assert "ValueError: bad sample" in payload["exception"]


def test_full_queue_drops_records() -> None:
    """A saturated queue discards records instead of blocking the caller."""

    queue: Queue[logging.LogRecord] = Queue(maxsize=1)
    handler = logging_pipeline.BoundedQueueHandler(queue)
    record = logging.LogRecord("procwatt", logging.INFO, __file__, 1, "m", None, None)

    handler.enqueue(record)
    handler.enqueue(record)

    assert queue.qsize() == 1


def test_shutdown_listeners_logs_failures(caplog: pytest.LogCaptureFixture) -> None:
    """Listener shutdown failures should emit warnings."""

    class _FailingListener(QueueListener):
        def __init__(self) -> None:
            super().__init__(Queue(), logging.StreamHandler())

        def stop(self) -> None:
            raise RuntimeError("stop failure")

    with caplog.at_level(logging.WARNING):
        logging_pipeline.shutdown_listeners([_FailingListener()])

    assert "Failed to stop logging listener" in caplog.text
