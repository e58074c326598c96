"""Metrics sinks receiving governed power series."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from threading import Lock
from typing import Protocol

from procwatt.models import EmittedSeries, SamplerStats

__all__ = ["MemorySink", "MetricsSink"]


class MetricsSink(Protocol):
    """Capability accepting one tick's governed series."""

    def publish(
        self, series: Sequence[EmittedSeries], stats: SamplerStats | None = None
    ) -> None:
        """Hand a tick's series (and optional sampler diagnostics) to the sink.

        Raises:
            SinkUnavailableError: If the series cannot be accepted.
        """


@dataclass(slots=True)
class MemorySink:
    """Keep the latest series in memory, for tests and embedding."""

    history_limit: int = 64
    _latest: tuple[EmittedSeries, ...] = field(init=False, default=())
    _stats: SamplerStats | None = field(init=False, default=None)
    _history: list[tuple[EmittedSeries, ...]] = field(
        init=False, default_factory=list, repr=False
    )
    _lock: Lock = field(init=False, default_factory=Lock, repr=False)

    def publish(
        self, series: Sequence[EmittedSeries], stats: SamplerStats | None = None
    ) -> None:
        snapshot = tuple(series)
        with self._lock:
            self._latest = snapshot
            self._stats = stats
            self._history.append(snapshot)
            if len(self._history) > self.history_limit:
                del self._history[0]

    def current_snapshot(self) -> tuple[EmittedSeries, ...]:
        """Return the series from the most recent publish."""

        with self._lock:
            return self._latest

    def latest_stats(self) -> SamplerStats | None:
        """Return the diagnostics from the most recent publish."""

        with self._lock:
            return self._stats

    def history(self) -> list[tuple[EmittedSeries, ...]]:
        """Return recent publishes, oldest first."""

        with self._lock:
            return list(self._history)
