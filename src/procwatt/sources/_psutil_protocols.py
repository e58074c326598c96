"""Protocols describing the subset of psutil used by process sources."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import Any, Protocol


class CpuTimesProtocol(Protocol):
    """Minimal interface for psutil per-process CPU times."""

    user: float
    system: float


class ProcessProtocol(Protocol):
    """Minimal interface for psutil process handles yielded by ``process_iter``."""

    info: dict[str, Any]


class PsutilProtocol(Protocol):
    """Subset of psutil APIs used by the process source."""

    Error: type[Exception]

    def process_iter(
        self, attrs: Sequence[str] | None = None
    ) -> Iterator[ProcessProtocol]:
        """Yield live processes with ``attrs`` pre-fetched into ``info``."""

    def cpu_count(self, logical: bool = True) -> int | None:
        """Return the number of CPUs."""
