"""Value types flowing through the sampling pipeline."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class ProcessIdentity:
    """PID plus start time, so a reused PID never continues another process."""

    pid: int
    start_time: float


@dataclass(slots=True, frozen=True)
class ProcessRecord:
    """Raw process entry returned by a snapshot source.

    Attributes:
        pid: Operating system process identifier.
        name: Short executable name.
        cumulative_cpu_time: User plus system CPU seconds since process start.
        start_time: Process start time in the source's own clock.
        cmdline: Joined command line, empty when unavailable.
    """

    pid: int
    name: str
    cumulative_cpu_time: float
    start_time: float
    cmdline: str = ""


@dataclass(slots=True, frozen=True)
class ProcessSample:
    """A process record stamped with the tick that observed it."""

    identity: ProcessIdentity
    name: str
    cumulative_cpu_time: float
    observed_at: float
    cmdline: str = ""

    @classmethod
    def from_record(cls, record: ProcessRecord, observed_at: float) -> ProcessSample:
        """Build a sample from a source record.

        Args:
            record: Raw entry produced by a snapshot source.
            observed_at: Tick timestamp at which the snapshot was taken.

        Returns:
            Sample keyed by the record's composite identity.
        """

        return cls(
            identity=ProcessIdentity(pid=record.pid, start_time=record.start_time),
            name=record.name,
            cumulative_cpu_time=record.cumulative_cpu_time,
            observed_at=observed_at,
            cmdline=record.cmdline,
        )


@dataclass(slots=True)
class TrackedProcessState:
    """Baseline kept by the tracker for one process identity."""

    last_cumulative_cpu_time: float
    last_observed_tick: float
    missed_ticks: int = 0


@dataclass(slots=True, frozen=True)
class CPUDelta:
    """CPU seconds consumed by one process between two ticks.

    ``tick`` is the timestamp of the tick that closed the interval.
    """

    identity: ProcessIdentity
    name: str
    delta_cpu_time: float
    elapsed_wall_time: float
    cmdline: str = ""
    tick: float = 0.0


@dataclass(slots=True, frozen=True)
class PowerEstimate:
    """Estimated power and energy attributed to one process for one tick.

    Attributes:
        identity: Process the estimate belongs to.
        name: Short executable name.
        estimated_power: Average power over the interval in watts.
        estimated_energy: Energy over the interval in joules.
        cpu_time: CPU seconds consumed over the interval.
        tick_timestamp: Tick at which the interval ended.
        cmdline: Joined command line, empty when unavailable.
    """

    identity: ProcessIdentity
    name: str
    estimated_power: float
    estimated_energy: float
    cpu_time: float
    tick_timestamp: float
    cmdline: str = ""


LabelSet = tuple[tuple[str, str], ...]


@dataclass(slots=True, frozen=True)
class EmittedSeries:
    """Label-bounded sample handed to a metrics sink."""

    labels: LabelSet
    power_watts: float
    energy_joules: float
    cpu_seconds: float
    timestamp: float

    @property
    def label_names(self) -> tuple[str, ...]:
        """Return label names in emission order."""

        return tuple(name for name, _ in self.labels)

    @property
    def label_values(self) -> tuple[str, ...]:
        """Return label values in emission order."""

        return tuple(value for _, value in self.labels)

    def label_dict(self) -> dict[str, str]:
        """Return the labels as a dictionary."""

        return dict(self.labels)


@dataclass(slots=True, frozen=True)
class SamplerStats:
    """Cumulative diagnostics for one sampler instance."""

    ticks: int = 0
    skipped_ticks: int = 0
    invalid_intervals: int = 0
    discontinuities: int = 0
    evictions: int = 0
    overflow_events: int = 0
    sink_failures: int = 0
    dropped_publishes: int = 0
    tracked_processes: int = 0

    def to_dict(self) -> dict[str, int]:
        """Return the counters keyed by field name."""

        return {
            "ticks": self.ticks,
            "skipped_ticks": self.skipped_ticks,
            "invalid_intervals": self.invalid_intervals,
            "discontinuities": self.discontinuities,
            "evictions": self.evictions,
            "overflow_events": self.overflow_events,
            "sink_failures": self.sink_failures,
            "dropped_publishes": self.dropped_publishes,
            "tracked_processes": self.tracked_processes,
        }


__all__ = [
    "CPUDelta",
    "EmittedSeries",
    "LabelSet",
    "PowerEstimate",
    "ProcessIdentity",
    "ProcessRecord",
    "ProcessSample",
    "SamplerStats",
    "TrackedProcessState",
]
