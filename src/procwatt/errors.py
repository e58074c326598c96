"""Exception hierarchy for the sampling and estimation engine."""

from __future__ import annotations

__all__ = [
    "InvalidIntervalError",
    "ProcwattError",
    "SinkUnavailableError",
    "SourceUnavailableError",
    "TickOrderError",
]


class ProcwattError(RuntimeError):
    """Base class for procwatt errors."""


class SourceUnavailableError(ProcwattError):
    """Raised when the process table cannot be read for a tick."""


class InvalidIntervalError(ProcwattError):
    """Raised when a CPU delta spans a non-positive wall-clock interval."""


class SinkUnavailableError(ProcwattError):
    """Raised when governed series cannot be handed to the metrics sink."""


class TickOrderError(ProcwattError, ValueError):
    """Raised when the tracker is fed a tick that does not advance time."""
