"""Async sampling loop driving the estimation pipeline once per tick.

Each tick reads the process table, folds it into the tracker, prices the
resulting deltas with the cost model, bounds the label set with the
governor and publishes to the sink. Ticks never overlap, and a failing tick
is logged and counted but never stops the loop.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from procwatt.config.models import MonitorConfig
from procwatt.cost_model import CostModel, build_cost_model
from procwatt.errors import (
    InvalidIntervalError,
    SinkUnavailableError,
    SourceUnavailableError,
    TickOrderError,
)
from procwatt.governor import SeriesGovernor
from procwatt.models import (
    CPUDelta,
    EmittedSeries,
    PowerEstimate,
    ProcessSample,
    SamplerStats,
)
from procwatt.sinks import MetricsSink
from procwatt.sources import ProcessSnapshotSource
from procwatt.tracker import ProcessStateTracker

LOGGER = logging.getLogger(__name__)

_T = TypeVar("_T")


class SamplerState(enum.Enum):
    """Lifecycle states of :class:`SamplerLoop`."""

    IDLE = "idle"
    SAMPLING = "sampling"
    EMITTING = "emitting"
    STOPPED = "stopped"


@dataclass(slots=True, frozen=True)
class TickOutcome:
    """Everything one tick produced, for callers that drive ticks by hand.

    Attributes:
        timestamp: Clock reading at the start of the tick.
        skipped: ``True`` when the tick produced nothing.
        reason: Why the tick was skipped, if it was.
        deltas: CPU deltas returned by the tracker.
        estimates: Estimates that survived the cost model.
        series: Governed series handed (or due to be handed) to the sink.
        published: Whether the sink accepted the series.
    """

    timestamp: float
    skipped: bool = False
    reason: str | None = None
    deltas: tuple[CPUDelta, ...] = ()
    estimates: tuple[PowerEstimate, ...] = ()
    series: tuple[EmittedSeries, ...] = ()
    published: bool = False


@dataclass(slots=True)
class SamplerLoop:
    """Drive the source → tracker → cost model → governor → sink pipeline.

    The tracker and governor are owned by the loop, so independent loops
    never share process state.

    Attributes:
        source: Capability listing running processes.
        sink: Destination for governed series.
        config: Sampler, cost model and label configuration.
        cost_model: Strategy override; built from ``config`` when omitted.
        clock: Monotonic clock supplying tick timestamps in seconds.
        logger: Logger used for per-tick diagnostics.
    """

    source: ProcessSnapshotSource
    sink: MetricsSink
    config: MonitorConfig = field(default_factory=MonitorConfig)
    cost_model: CostModel | None = None
    clock: Callable[[], float] = field(default=time.monotonic)
    logger: logging.Logger = field(default=LOGGER, repr=False)
    _model: CostModel = field(init=False, repr=False)
    _tracker: ProcessStateTracker = field(init=False, repr=False)
    _governor: SeriesGovernor = field(init=False, repr=False)
    _state: SamplerState = field(init=False, default=SamplerState.IDLE)
    _stop_requested: asyncio.Event = field(init=False, repr=False)
    _task: asyncio.Task[None] | None = field(init=False, default=None, repr=False)
    _inflight_publish: asyncio.Future[None] | None = field(
        init=False, default=None, repr=False
    )
    _ticks: int = field(init=False, default=0)
    _skipped_ticks: int = field(init=False, default=0)
    _invalid_intervals: int = field(init=False, default=0)
    _sink_failures: int = field(init=False, default=0)
    _dropped_publishes: int = field(init=False, default=0)
    _consecutive_sink_failures: int = field(init=False, default=0)
    _backoff_remaining: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        self._model = self.cost_model or build_cost_model(self.config.cost_model)
        self._tracker = ProcessStateTracker(
            eviction_grace_ticks=self.config.eviction_grace_ticks
        )
        self._governor = SeriesGovernor(policy=self.config.label_policy)
        self._stop_requested = asyncio.Event()

    @property
    def state(self) -> SamplerState:
        """Return the current lifecycle state."""

        return self._state

    @property
    def tracker(self) -> ProcessStateTracker:
        """Return the tracker owned by this loop."""

        return self._tracker

    @property
    def governor(self) -> SeriesGovernor:
        """Return the governor owned by this loop."""

        return self._governor

    @property
    def backoff_remaining(self) -> int:
        """Return how many upcoming ticks will skip publishing."""

        return self._backoff_remaining

    def stats(self) -> SamplerStats:
        """Return a snapshot of the loop's diagnostic counters."""

        return SamplerStats(
            ticks=self._ticks,
            skipped_ticks=self._skipped_ticks,
            invalid_intervals=self._invalid_intervals,
            discontinuities=self._tracker.discontinuities,
            evictions=self._tracker.evictions,
            overflow_events=self._governor.overflow_events,
            sink_failures=self._sink_failures,
            dropped_publishes=self._dropped_publishes,
            tracked_processes=self._tracker.tracked_count,
        )

    async def start(self) -> None:
        """Run :meth:`run` as a background task if it is not already running."""

        if self._task is not None and not self._task.done():
            return
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self.run(), name="procwatt-sampler")

    async def stop(self) -> None:
        """Request shutdown and wait for the in-flight tick to finish.

        A publish still running past its timeout is given one more
        ``tick_timeout`` to return.
        """

        self.request_stop()
        task = self._task
        self._task = None
        if task is not None:
            await task
        inflight = self._inflight_publish
        if inflight is not None and not inflight.done():
            await asyncio.wait({inflight}, timeout=self.config.tick_timeout)
        self._state = SamplerState.STOPPED

    def request_stop(self) -> None:
        """Ask the loop to stop at the next tick boundary."""

        self._stop_requested.set()

    async def run(self) -> None:
        """Tick every ``poll_interval`` seconds until a stop is requested."""

        loop = asyncio.get_running_loop()
        interval = self.config.poll_interval
        self.logger.info(
            "Sampler started",
            extra={
                "poll_interval": interval,
                "attribution_mode": self.config.cost_model.attribution_mode,
            },
        )
        try:
            while not self._stop_requested.is_set():
                started = loop.time()
                try:
                    await self.run_once()
                except Exception:
                    self._skipped_ticks += 1
                    self._state = SamplerState.IDLE
                    self.logger.exception("Unexpected failure during tick")

                remaining = max(interval - (loop.time() - started), 0.0)
                try:
                    await asyncio.wait_for(self._stop_requested.wait(), remaining)
                except TimeoutError:
                    pass
        finally:
            self._state = SamplerState.STOPPED
            self.logger.info("Sampler stopped", extra=self.stats().to_dict())

    async def run_once(self) -> TickOutcome:
        """Execute exactly one tick of the pipeline.

        Returns:
            Summary of what the tick produced. Skipped ticks leave the
            tracker untouched.
        """

        if self._state is SamplerState.STOPPED:
            return TickOutcome(timestamp=self.clock(), skipped=True, reason="stopped")

        now = self.clock()
        self._state = SamplerState.SAMPLING
        try:
            records = await self._bounded(self.source.list_processes)
        except SourceUnavailableError as exc:
            return self._skip(now, "source_unavailable", exc)
        except TimeoutError as exc:
            return self._skip(now, "source_timeout", exc)

        self._state = SamplerState.EMITTING
        samples = [ProcessSample.from_record(record, now) for record in records]
        try:
            deltas = self._tracker.update(samples, now)
        except TickOrderError as exc:
            return self._skip(now, "tick_order", exc)

        estimates = self._estimate(deltas)
        series = self._governor.govern(estimates)
        self._ticks += 1
        published = await self._publish(series)

        self._state = SamplerState.IDLE
        return TickOutcome(
            timestamp=now,
            deltas=tuple(deltas),
            estimates=tuple(estimates),
            series=tuple(series),
            published=published,
        )

    def _estimate(self, deltas: list[CPUDelta]) -> list[PowerEstimate]:
        estimates: list[PowerEstimate] = []
        for delta in deltas:
            try:
                estimates.append(self._model.estimate(delta, self.config.cost_model))
            except InvalidIntervalError:
                self._invalid_intervals += 1
                self.logger.debug(
                    "Skipped sample with non-positive interval",
                    extra={"pid": delta.identity.pid, "elapsed": delta.elapsed_wall_time},
                )
        return estimates

    async def _publish(self, series: list[EmittedSeries]) -> bool:
        """Hand ``series`` to the sink, honouring back-off after failures.

        A publish that outlives ``tick_timeout`` keeps running in its worker
        thread. Until it returns no new publish is started, so a late
        publish can never overwrite a newer tick.
        """

        if self._backoff_remaining > 0:
            self._backoff_remaining -= 1
            self._dropped_publishes += 1
            return False

        inflight = self._inflight_publish
        if inflight is not None and not inflight.done():
            self._dropped_publishes += 1
            self.logger.debug("Previous publish still running; dropping tick")
            return False

        publish = asyncio.ensure_future(
            asyncio.to_thread(self.sink.publish, series, self.stats())
        )
        self._inflight_publish = publish
        try:
            await asyncio.wait_for(
                asyncio.shield(publish), timeout=self.config.tick_timeout
            )
        except (SinkUnavailableError, TimeoutError) as exc:
            self._sink_failures += 1
            self._dropped_publishes += 1
            self._consecutive_sink_failures += 1
            backoff = min(
                2 ** (self._consecutive_sink_failures - 1),
                self.config.max_sink_backoff_ticks,
            )
            self._backoff_remaining = backoff - 1
            self.logger.warning(
                "Metrics sink unavailable; dropping tick",
                extra={
                    "error": str(exc) or type(exc).__name__,
                    "consecutive_failures": self._consecutive_sink_failures,
                    "backoff_ticks": self._backoff_remaining,
                },
            )
            return False

        self._consecutive_sink_failures = 0
        return True

    async def _bounded(self, func: Callable[..., _T], *args: Any) -> _T:
        """Run blocking ``func`` in a worker thread under the tick timeout."""

        return await asyncio.wait_for(
            asyncio.to_thread(func, *args), timeout=self.config.tick_timeout
        )

    def _skip(self, now: float, reason: str, exc: Exception) -> TickOutcome:
        self._skipped_ticks += 1
        self._state = SamplerState.IDLE
        self.logger.warning(
            "Skipping tick",
            extra={"reason": reason, "error": str(exc) or type(exc).__name__},
        )
        return TickOutcome(timestamp=now, skipped=True, reason=reason)


__all__ = ["SamplerLoop", "SamplerState", "TickOutcome"]
