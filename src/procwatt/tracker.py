"""Per-process CPU time tracking across polling ticks.

The tracker keeps one baseline per process identity and turns successive
cumulative CPU readings into non-negative deltas. Counter discontinuities and
process exits are absorbed here so downstream stages only ever see plausible
intervals.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from procwatt.errors import TickOrderError
from procwatt.models import CPUDelta, ProcessIdentity, ProcessSample, TrackedProcessState

LOGGER = logging.getLogger(__name__)

DEFAULT_EVICTION_GRACE_TICKS = 2


@dataclass(slots=True)
class ProcessStateTracker:
    """Compute CPU deltas for processes observed across ticks.

    Not thread-safe: exactly one caller may drive :meth:`update`, with a
    strictly increasing ``now``.

    Attributes:
        eviction_grace_ticks: Number of consecutive snapshots an identity may
            be missing from before its baseline is discarded.
        logger: Logger used for diagnostics.
    """

    eviction_grace_ticks: int = DEFAULT_EVICTION_GRACE_TICKS
    logger: logging.Logger = field(default=LOGGER, repr=False)
    _states: dict[ProcessIdentity, TrackedProcessState] = field(
        init=False, default_factory=dict, repr=False
    )
    _last_tick: float | None = field(init=False, default=None)
    _discontinuities: int = field(init=False, default=0)
    _evictions: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        if self.eviction_grace_ticks < 1:
            msg = (
                "eviction_grace_ticks must be at least 1, "
                f"got {self.eviction_grace_ticks}"
            )
            raise ValueError(msg)

    @property
    def tracked_count(self) -> int:
        """Return the number of identities currently holding a baseline."""

        return len(self._states)

    @property
    def discontinuities(self) -> int:
        """Return how many negative deltas have reset a baseline."""

        return self._discontinuities

    @property
    def evictions(self) -> int:
        """Return how many identities have been evicted as exited."""

        return self._evictions

    def state_for(self, identity: ProcessIdentity) -> TrackedProcessState | None:
        """Return a copy of the baseline held for ``identity``, if any."""

        state = self._states.get(identity)
        if state is None:
            return None
        return TrackedProcessState(
            last_cumulative_cpu_time=state.last_cumulative_cpu_time,
            last_observed_tick=state.last_observed_tick,
            missed_ticks=state.missed_ticks,
        )

    def reset(self) -> None:
        """Drop every baseline, as a daemon restart would."""

        self._states.clear()
        self._last_tick = None

    def update(self, snapshot: Sequence[ProcessSample], now: float) -> list[CPUDelta]:
        """Fold a process snapshot into the tracked state.

        Args:
            snapshot: Processes observed during the current tick. When an
                identity appears more than once the first entry wins.
            now: Tick timestamp in seconds; must exceed the previous call's.

        Returns:
            One delta per identity that already had a baseline and whose
            cumulative CPU time did not go backwards.

        Raises:
            TickOrderError: If ``now`` does not advance past the last tick.
        """

        if self._last_tick is not None and now <= self._last_tick:
            raise TickOrderError(
                f"Tick {now} does not advance past previous tick {self._last_tick}"
            )
        self._last_tick = now

        deltas: list[CPUDelta] = []
        seen: set[ProcessIdentity] = set()

        for sample in snapshot:
            identity = sample.identity
            if identity in seen:
                continue
            seen.add(identity)

            state = self._states.get(identity)
            if state is None:
                self._states[identity] = TrackedProcessState(
                    last_cumulative_cpu_time=sample.cumulative_cpu_time,
                    last_observed_tick=now,
                )
                continue

            delta = sample.cumulative_cpu_time - state.last_cumulative_cpu_time
            elapsed = now - state.last_observed_tick
            state.last_cumulative_cpu_time = sample.cumulative_cpu_time
            state.last_observed_tick = now
            state.missed_ticks = 0

            if delta < 0:
                self._discontinuities += 1
                self.logger.debug(
                    "CPU counter went backwards; baseline reset",
                    extra={
                        "pid": identity.pid,
                        "process_name": sample.name,
                        "delta": delta,
                    },
                )
                continue

            deltas.append(
                CPUDelta(
                    identity=identity,
                    name=sample.name,
                    delta_cpu_time=delta,
                    elapsed_wall_time=elapsed,
                    cmdline=sample.cmdline,
                    tick=now,
                )
            )

        self._age_missing(seen)
        return deltas

    def _age_missing(self, seen: set[ProcessIdentity]) -> None:
        """Count a missed tick for absent identities and evict expired ones."""

        expired: list[ProcessIdentity] = []
        for identity, state in self._states.items():
            if identity in seen:
                continue
            state.missed_ticks += 1
            if state.missed_ticks >= self.eviction_grace_ticks:
                expired.append(identity)

        for identity in expired:
            del self._states[identity]
            self._evictions += 1

        if expired:
            self.logger.debug(
                "Evicted exited processes",
                extra={"evicted": len(expired), "tracked": len(self._states)},
            )


__all__ = ["DEFAULT_EVICTION_GRACE_TICKS", "ProcessStateTracker"]
