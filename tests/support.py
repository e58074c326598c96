"""Stub sources, sinks and builders shared by the test modules."""

from __future__ import annotations

from collections.abc import Sequence

from procwatt.errors import SinkUnavailableError
from procwatt.models import (
    EmittedSeries,
    ProcessIdentity,
    ProcessRecord,
    ProcessSample,
    SamplerStats,
)


class ScriptedSource:
    """Snapshot source replaying a fixed sequence of process tables.

    Entries are record lists or exceptions to raise. The last entry repeats
    once the script is exhausted.
    """

    def __init__(self, script: Sequence[Sequence[ProcessRecord] | Exception]) -> None:
        if not script:
            raise ValueError("ScriptedSource requires at least one entry")
        self._script = list(script)
        self.calls = 0

    def list_processes(self) -> list[ProcessRecord]:
        index = min(self.calls, len(self._script) - 1)
        self.calls += 1
        entry = self._script[index]
        if isinstance(entry, Exception):
            raise entry
        return list(entry)


class FlakySink:
    """Sink failing on the publish attempts listed in ``failures``."""

    def __init__(self, failures: set[int] | None = None) -> None:
        self.failures = failures or set()
        self.attempts = 0
        self.published: list[tuple[EmittedSeries, ...]] = []
        self.stats: list[SamplerStats | None] = []

    def publish(
        self, series: Sequence[EmittedSeries], stats: SamplerStats | None = None
    ) -> None:
        self.attempts += 1
        if self.attempts in self.failures:
            raise SinkUnavailableError(f"publish {self.attempts} refused")
        self.published.append(tuple(series))
        self.stats.append(stats)


class StepClock:
    """Deterministic clock advancing by ``step`` seconds per reading."""

    def __init__(self, start: float = 0.0, step: float = 1.0) -> None:
        self._value = start
        self._step = step

    def __call__(self) -> float:
        self._value += self._step
        return self._value


def sample(
    pid: int,
    cpu: float,
    *,
    start_time: float = 100.0,
    name: str = "proc",
    at: float = 0.0,
) -> ProcessSample:
    """Build a :class:`ProcessSample` with compact arguments."""

    return ProcessSample(
        identity=ProcessIdentity(pid=pid, start_time=start_time),
        name=name,
        cumulative_cpu_time=cpu,
        observed_at=at,
    )


def record(
    pid: int, cpu: float, *, start_time: float = 100.0, name: str = "proc"
) -> ProcessRecord:
    """Build a :class:`ProcessRecord` with compact arguments."""

    return ProcessRecord(
        pid=pid, name=name, cumulative_cpu_time=cpu, start_time=start_time
    )
