"""Example script printing the processes drawing the most estimated power."""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Optional

from procwatt.config import MonitorConfig, detect_core_count
from procwatt.cost_model import CostModelConfig
from procwatt.governor import LabelPolicy
from procwatt.sampler import SamplerLoop
from procwatt.sinks import MemorySink
from procwatt.sources import build_source


async def _collect(config: MonitorConfig, ticks: int) -> MemorySink:
    sink = MemorySink()
    sampler = SamplerLoop(source=build_source(config.source), sink=sink, config=config)
    for _ in range(max(ticks, 2)):
        await sampler.run_once()
        await asyncio.sleep(config.poll_interval)
    return sink


def main(argv: Optional[list[str]] = None) -> int:
    """Sample the host briefly and print the top consumers as JSON."""
    parser = argparse.ArgumentParser(
        description="Estimate per-process power for a few ticks and print the top consumers."
    )
    parser.add_argument("--ticks", type=int, default=5)
    parser.add_argument("--interval", type=float, default=0.5, help="Seconds between ticks")
    parser.add_argument("--watts", type=float, default=35.0, help="Package power draw")
    parser.add_argument("--top", type=int, default=10)
    args = parser.parse_args(argv)

    config = MonitorConfig(
        poll_interval=args.interval,
        cost_model=CostModelConfig(
            total_power_draw=args.watts, core_count=detect_core_count()
        ),
        label_policy=LabelPolicy(include_cmdline=True),
    )
    sink = asyncio.run(_collect(config, args.ticks))

    ranked = sorted(sink.current_snapshot(), key=lambda s: s.power_watts, reverse=True)
    report = [
        {**series.label_dict(), "watts": round(series.power_watts, 3)}
        for series in ranked[: max(args.top, 1)]
    ]
    print(json.dumps(report, indent=2))
    return 0


if __name__ == "__main__":  # pragma: no cover - example entry point
    raise SystemExit(main())
