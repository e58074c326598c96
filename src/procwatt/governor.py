"""Label cardinality control for emitted power series.

Labelling every sample with its PID yields one series per process instance
ever observed. The governor admits at most ``max_distinct_series`` label keys
over its lifetime and either drops or folds anything beyond that ceiling.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Final, Literal

from procwatt.models import EmittedSeries, LabelSet, PowerEstimate

LOGGER = logging.getLogger(__name__)

NameCollisionStrategy = Literal["keep-first", "aggregate-by-name"]

NAME_COLLISION_STRATEGIES: Final[tuple[str, ...]] = ("keep-first", "aggregate-by-name")

AGGREGATE_LABEL: Final[str] = "aggregate"

DEFAULT_MAX_DISTINCT_SERIES: Final[int] = 1000


@dataclass(slots=True, frozen=True)
class LabelPolicy:
    """Controls which labels are emitted and how many series may exist.

    Attributes:
        include_pid: Emit a ``pid`` label. Unbounded without the ceiling.
        include_name: Emit a ``process_name`` label.
        include_cmdline: Emit a ``cmdline`` label.
        max_distinct_series: Lifetime ceiling on distinct label keys.
        name_collision_strategy: ``keep-first`` drops estimates that overflow
            or collide; ``aggregate-by-name`` folds them into per-name buckets.
    """

    include_pid: bool = True
    include_name: bool = True
    include_cmdline: bool = False
    max_distinct_series: int = DEFAULT_MAX_DISTINCT_SERIES
    name_collision_strategy: NameCollisionStrategy = "keep-first"

    def __post_init__(self) -> None:
        if self.max_distinct_series < 1:
            msg = (
                "max_distinct_series must be at least 1, "
                f"got {self.max_distinct_series}"
            )
            raise ValueError(msg)
        if self.name_collision_strategy not in NAME_COLLISION_STRATEGIES:
            msg = f"Unknown name collision strategy: {self.name_collision_strategy!r}"
            raise ValueError(msg)

    def labels_for(self, estimate: PowerEstimate) -> LabelSet:
        """Return the full label set for ``estimate`` under this policy."""

        labels: list[tuple[str, str]] = []
        if self.include_name:
            labels.append(("process_name", estimate.name))
        if self.include_pid:
            labels.append(("pid", str(estimate.identity.pid)))
        if self.include_cmdline:
            labels.append(("cmdline", estimate.cmdline))
        return tuple(labels)

    def aggregate_labels_for(self, estimate: PowerEstimate) -> LabelSet:
        """Return the bucket an overflowing estimate is folded into.

        The bucket has the same label names as :meth:`labels_for`. The name is
        kept and every per-instance label reads ``"aggregate"``, so with names
        excluded all overflowing estimates share a single bucket.
        """

        labels: list[tuple[str, str]] = []
        if self.include_name:
            labels.append(("process_name", estimate.name))
        if self.include_pid:
            labels.append(("pid", AGGREGATE_LABEL))
        if self.include_cmdline:
            labels.append(("cmdline", AGGREGATE_LABEL))
        return tuple(labels)


@dataclass(slots=True)
class SeriesGovernor:
    """Project power estimates onto a bounded set of label keys.

    The admitted-key set never grows past ``policy.max_distinct_series``
    entries plus one aggregate bucket per process name (a single bucket
    when names are excluded).
    """

    policy: LabelPolicy = field(default_factory=LabelPolicy)
    logger: logging.Logger = field(default=LOGGER, repr=False)
    _admitted: set[LabelSet] = field(init=False, default_factory=set, repr=False)
    _buckets: set[LabelSet] = field(init=False, default_factory=set, repr=False)
    _overflow_events: int = field(init=False, default=0)
    _folded_events: int = field(init=False, default=0)
    _collision_events: int = field(init=False, default=0)

    @property
    def distinct_series(self) -> int:
        """Return the number of label keys admitted so far."""

        return len(self._admitted) + len(self._buckets)

    @property
    def overflow_events(self) -> int:
        """Return how many estimates hit the series ceiling.

        Estimates are counted, not keys: a process kept out by the ceiling
        adds one event on every tick it is observed.
        """

        return self._overflow_events

    @property
    def folded_events(self) -> int:
        """Return how many overflowing estimates were folded into buckets."""

        return self._folded_events

    @property
    def collision_events(self) -> int:
        """Return how many estimates were dropped as same-tick duplicates."""

        return self._collision_events

    def project(self, estimate: PowerEstimate) -> EmittedSeries | None:
        """Project one estimate, or return ``None`` when it is dropped.

        Args:
            estimate: Estimate produced by a cost model.

        Returns:
            The governed series, labelled either with the estimate's own key
            or with its aggregate bucket, or ``None`` under ``keep-first``
            once the ceiling is reached.
        """

        labels = self.policy.labels_for(estimate)
        if labels not in self._admitted:
            if len(self._admitted) >= self.policy.max_distinct_series:
                self._overflow_events += 1
                if self.policy.name_collision_strategy == "keep-first":
                    self.logger.debug(
                        "Dropped estimate over series ceiling",
                        extra={
                            "pid": estimate.identity.pid,
                            "process_name": estimate.name,
                            "max_distinct_series": self.policy.max_distinct_series,
                        },
                    )
                    return None
                labels = self.policy.aggregate_labels_for(estimate)
                self._buckets.add(labels)
                self._folded_events += 1
            else:
                self._admitted.add(labels)

        return EmittedSeries(
            labels=labels,
            power_watts=estimate.estimated_power,
            energy_joules=estimate.estimated_energy,
            cpu_seconds=estimate.cpu_time,
            timestamp=estimate.tick_timestamp,
        )

    def govern(self, estimates: Iterable[PowerEstimate]) -> list[EmittedSeries]:
        """Project a tick's estimates and merge series sharing a label key.

        Under ``keep-first`` only the first series per key survives; under
        ``aggregate-by-name`` power, energy and CPU time are summed.

        Args:
            estimates: Every estimate produced during one tick.

        Returns:
            Governed series in first-seen key order.
        """

        merged: dict[LabelSet, EmittedSeries] = {}
        for estimate in estimates:
            series = self.project(estimate)
            if series is None:
                continue
            existing = merged.get(series.labels)
            if existing is None:
                merged[series.labels] = series
                continue
            if self.policy.name_collision_strategy == "keep-first":
                self._collision_events += 1
                continue
            merged[series.labels] = EmittedSeries(
                labels=series.labels,
                power_watts=existing.power_watts + series.power_watts,
                energy_joules=existing.energy_joules + series.energy_joules,
                cpu_seconds=existing.cpu_seconds + series.cpu_seconds,
                timestamp=max(existing.timestamp, series.timestamp),
            )
        return list(merged.values())


__all__ = [
    "AGGREGATE_LABEL",
    "DEFAULT_MAX_DISTINCT_SERIES",
    "LabelPolicy",
    "NAME_COLLISION_STRATEGIES",
    "NameCollisionStrategy",
    "SeriesGovernor",
]
