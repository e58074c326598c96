"""Tests for the async sampling loop."""

from __future__ import annotations

import asyncio
import logging
import time

import pytest

from procwatt.config import MonitorConfig
from procwatt.cost_model import CostModelConfig
from procwatt.errors import SourceUnavailableError
from procwatt.governor import LabelPolicy
from procwatt.models import ProcessRecord, SamplerStats
from procwatt.sampler import SamplerLoop, SamplerState
from procwatt.sinks import MemorySink
from support import FlakySink, ScriptedSource, StepClock, record


def _config(**overrides: object) -> MonitorConfig:
    base: dict[str, object] = {
        "poll_interval": 0.01,
        "tick_timeout": 1.0,
        "cost_model": CostModelConfig(total_power_draw=100.0, core_count=1),
    }
    base.update(overrides)
    return MonitorConfig(**base)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_fully_busy_process_draws_full_package_power() -> None:
    """One busy core on a 100 W single-core host is billed 100 W per tick."""

    source = ScriptedSource([[record(1, float(cpu))] for cpu in range(5)])
    sink = FlakySink()
    sampler = SamplerLoop(source=source, sink=sink, config=_config(), clock=StepClock())

    outcomes = [await sampler.run_once() for _ in range(5)]

    assert outcomes[0].deltas == ()
    assert all(len(outcome.series) == 1 for outcome in outcomes[1:])
    published = [series for batch in sink.published for series in batch]
    assert [s.power_watts for s in published] == [pytest.approx(100.0)] * 4
    assert sum(s.energy_joules for s in published) == pytest.approx(400.0)
    assert published[0].label_dict() == {"process_name": "proc", "pid": "1"}
    assert sampler.stats().ticks == 5
    assert sampler.state is SamplerState.IDLE


@pytest.mark.asyncio
async def test_source_failure_skips_tick_without_touching_baselines() -> None:
    source = ScriptedSource(
        [
            [record(1, 0.0)],
            SourceUnavailableError("process table unreadable"),
            [record(1, 2.0)],
        ]
    )
    sink = MemorySink()
    sampler = SamplerLoop(source=source, sink=sink, config=_config(), clock=StepClock())

    await sampler.run_once()
    skipped = await sampler.run_once()
    resumed = await sampler.run_once()

    assert skipped.skipped and skipped.reason == "source_unavailable"
    assert len(resumed.deltas) == 1
    assert resumed.deltas[0].elapsed_wall_time == pytest.approx(2.0)
    (series,) = sink.current_snapshot()
    assert series.power_watts == pytest.approx(100.0)
    assert series.energy_joules == pytest.approx(200.0)
    assert sampler.stats().skipped_ticks == 1


@pytest.mark.asyncio
async def test_slow_source_is_bounded_by_tick_timeout() -> None:
    class SlowSource:
        def list_processes(self) -> list[ProcessRecord]:
            time.sleep(0.2)
            return []

    sampler = SamplerLoop(
        source=SlowSource(),
        sink=MemorySink(),
        config=_config(tick_timeout=0.02),
        clock=StepClock(),
    )

    outcome = await sampler.run_once()

    assert outcome.skipped
    assert outcome.reason == "source_timeout"


@pytest.mark.asyncio
async def test_sink_failures_back_off_exponentially(
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Failed publishes skip 0, 1 and then 3 ticks before retrying."""

    source = ScriptedSource([[record(1, 0.0)]])
    sink = FlakySink(failures={1, 2, 3})
    sampler = SamplerLoop(source=source, sink=sink, config=_config(), clock=StepClock())

    with caplog.at_level(logging.WARNING, logger="procwatt.sampler"):
        outcomes = [await sampler.run_once() for _ in range(8)]

    assert [outcome.published for outcome in outcomes] == [
        False,
        False,
        False,
        False,
        False,
        False,
        False,
        True,
    ]
    assert sink.attempts == 4
    stats = sampler.stats()
    assert stats.sink_failures == 3
    assert stats.dropped_publishes == 7
    assert sampler.backoff_remaining == 0
    assert any(
        record.message == "Metrics sink unavailable; dropping tick"
        for record in caplog.records
    )


@pytest.mark.asyncio
async def test_backoff_is_capped() -> None:
    """With a cap of two ticks, attempts settle into every other tick."""

    sink = FlakySink(failures=set(range(1, 100)))
    sampler = SamplerLoop(
        source=ScriptedSource([[record(1, 0.0)]]),
        sink=sink,
        config=_config(max_sink_backoff_ticks=2),
        clock=StepClock(),
    )

    attempts = []
    for _ in range(10):
        await sampler.run_once()
        attempts.append(sink.attempts)

    assert attempts == [1, 2, 2, 3, 3, 4, 4, 5, 5, 6]
    assert sampler.stats().sink_failures == 6


@pytest.mark.asyncio
async def test_stats_travel_with_each_publish() -> None:
    sink = FlakySink()
    sampler = SamplerLoop(
        source=ScriptedSource([[record(1, 0.0), record(2, 0.0)]]),
        sink=sink,
        config=_config(),
        clock=StepClock(),
    )

    await sampler.run_once()

    (stats,) = sink.stats
    assert stats is not None
    assert stats.tracked_processes == 2


@pytest.mark.asyncio
async def test_governor_ceiling_applies_inside_loop() -> None:
    source = ScriptedSource(
        [
            [record(1, 0.0), record(2, 0.0), record(3, 0.0)],
            [record(1, 1.0), record(2, 1.0), record(3, 1.0)],
        ]
    )
    sink = MemorySink()
    sampler = SamplerLoop(
        source=source,
        sink=sink,
        config=_config(label_policy=LabelPolicy(max_distinct_series=2)),
        clock=StepClock(),
    )

    await sampler.run_once()
    outcome = await sampler.run_once()

    assert len(outcome.estimates) == 3
    assert len(sink.current_snapshot()) == 2
    assert sampler.stats().overflow_events == 1


@pytest.mark.asyncio
async def test_stop_finishes_in_flight_tick_and_reaches_stopped() -> None:
    source = ScriptedSource([[record(1, 0.0)], [record(1, 0.5)]])
    sink = MemorySink()
    sampler = SamplerLoop(source=source, sink=sink, config=_config())

    await sampler.start()
    await asyncio.sleep(0.05)
    await sampler.stop()

    assert sampler.state is SamplerState.STOPPED
    assert source.calls >= 1
    calls = source.calls
    outcome = await sampler.run_once()
    assert outcome.skipped and outcome.reason == "stopped"
    assert source.calls == calls


@pytest.mark.asyncio
async def test_start_is_idempotent() -> None:
    sampler = SamplerLoop(
        source=ScriptedSource([[]]), sink=MemorySink(), config=_config()
    )

    await sampler.start()
    await sampler.start()
    await sampler.stop()

    assert sampler.state is SamplerState.STOPPED


@pytest.mark.asyncio
async def test_unexpected_tick_failure_does_not_stop_loop(
    caplog: pytest.LogCaptureFixture,
) -> None:
    class BrokenSource:
        def __init__(self) -> None:
            self.calls = 0

        def list_processes(self) -> list[ProcessRecord]:
            self.calls += 1
            raise RuntimeError("unexpected")

    source = BrokenSource()
    sampler = SamplerLoop(source=source, sink=MemorySink(), config=_config())

    with caplog.at_level(logging.ERROR, logger="procwatt.sampler"):
        await sampler.start()
        await asyncio.sleep(0.05)
        await sampler.stop()

    assert source.calls >= 2
    assert sampler.stats().skipped_ticks == source.calls
    assert any(
        record.message == "Unexpected failure during tick" for record in caplog.records
    )


@pytest.mark.asyncio
async def test_stop_during_tick_still_publishes_that_tick() -> None:
    """A stop requested mid-tick lets the tick finish, publish included."""

    class SlowSource:
        def __init__(self) -> None:
            self.calls = 0

        def list_processes(self) -> list[ProcessRecord]:
            self.calls += 1
            time.sleep(0.1)
            return [record(1, 0.0)]

    source = SlowSource()
    sink = MemorySink()
    sampler = SamplerLoop(source=source, sink=sink, config=_config(poll_interval=5.0))

    await sampler.start()
    await asyncio.sleep(0.02)
    assert sampler.state is SamplerState.SAMPLING
    await sampler.stop()

    assert source.calls == 1
    assert len(sink.history()) == 1
    assert sink.latest_stats() is not None
    assert sampler.state is SamplerState.STOPPED


@pytest.mark.asyncio
async def test_timed_out_publish_is_never_overtaken() -> None:
    """A late publish finishes before the next one starts, so newer data wins."""

    class SlowFirstSink:
        def __init__(self) -> None:
            self.completed: list[int] = []

        def publish(self, series: object, stats: SamplerStats | None = None) -> None:
            assert stats is not None
            if not self.completed and stats.ticks == 1:
                time.sleep(0.3)
            self.completed.append(stats.ticks)

    sink = SlowFirstSink()
    sampler = SamplerLoop(
        source=ScriptedSource([[record(1, 0.0)]]),
        sink=sink,
        config=_config(tick_timeout=0.05),
        clock=StepClock(),
    )

    timed_out = await sampler.run_once()
    while_busy = await sampler.run_once()
    await asyncio.sleep(0.4)
    after = await sampler.run_once()

    assert not timed_out.published
    assert not while_busy.published
    assert after.published
    assert sink.completed == [1, 3]
    stats = sampler.stats()
    assert stats.sink_failures == 1
    assert stats.dropped_publishes == 2
