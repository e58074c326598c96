"""Command-line entrypoint for the procwatt sampling daemon."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from collections.abc import Sequence

from procwatt.config import ConfigOverrides, MonitorConfig, SOURCE_KINDS, load_config
from procwatt.cost_model import ATTRIBUTION_MODES
from procwatt.governor import NAME_COLLISION_STRATEGIES
from procwatt.host import HostInfo, collect_host_info
from procwatt.logging_pipeline import configure_structured_logging, shutdown_listeners
from procwatt.sampler import SamplerLoop
from procwatt.sinks.prometheus import (
    PowerSeriesCollector,
    PrometheusSink,
    PushGatewaySink,
)
from procwatt.sources import build_source
from procwatt.sources.procfs import ProcfsProcessSource

LOGGER = logging.getLogger("procwatt")


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the daemon CLI.

    Flags left unset fall back to the environment and configuration file.

    Returns:
        Configured :class:`argparse.ArgumentParser` instance.
    """

    parser = argparse.ArgumentParser(
        description="Estimate per-process power from CPU time and expose it to Prometheus"
    )
    parser.add_argument(
        "-m",
        "--metrics-address",
        default=None,
        help="Address on which to serve metrics (default: 127.0.0.1:9090).",
    )
    parser.add_argument(
        "-c",
        "--collection-interval",
        type=float,
        default=None,
        help="Interval in milliseconds at which to collect process information.",
    )
    parser.add_argument(
        "-a",
        "--average-die-power",
        type=float,
        default=None,
        help=(
            "Average power consumption of the CPU die in watts. The CPU's TDP is "
            "a reasonable value on a well utilised host."
        ),
    )
    parser.add_argument(
        "--core-count",
        type=int,
        default=None,
        help="Logical CPU count used to share the die power (default: detected).",
    )
    parser.add_argument(
        "--attribution-mode",
        choices=ATTRIBUTION_MODES,
        default=None,
        help="Cost model used to convert CPU time into power.",
    )
    parser.add_argument(
        "--max-series",
        type=int,
        default=None,
        help="Lifetime ceiling on distinct label combinations.",
    )
    parser.add_argument(
        "--collision-strategy",
        choices=NAME_COLLISION_STRATEGIES,
        default=None,
        help="What to do with series beyond the ceiling or sharing a label key.",
    )
    pid_group = parser.add_mutually_exclusive_group()
    pid_group.add_argument(
        "--include-pid",
        dest="include_pid",
        action="store_true",
        default=None,
        help="Label series with the process ID.",
    )
    pid_group.add_argument(
        "--no-include-pid",
        dest="include_pid",
        action="store_false",
        help="Aggregate series by process name only.",
    )
    parser.add_argument(
        "--include-cmdline",
        action="store_true",
        default=None,
        help="Label series with the full command line.",
    )
    parser.add_argument(
        "--source",
        choices=SOURCE_KINDS,
        default=None,
        help="Where process CPU times are read from (default: psutil).",
    )
    parser.add_argument(
        "--pushgateway",
        default=None,
        help="Push each tick to this Pushgateway instead of serving metrics.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a YAML or JSON configuration file.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        help="Logging verbosity (default: INFO).",
    )
    return parser


def cli_overrides(args: argparse.Namespace) -> ConfigOverrides:
    """Collect explicitly passed CLI flags as the highest-precedence layer.

    Args:
        args: Namespace produced by :func:`build_parser`.

    Returns:
        Overrides for every flag that was given on the command line.
    """

    overrides = ConfigOverrides()
    if args.metrics_address:
        overrides.sampler["metrics_address"] = args.metrics_address
    if args.collection_interval is not None:
        overrides.sampler["poll_interval"] = args.collection_interval / 1000.0
    if args.source:
        overrides.sampler["source"] = args.source
    if args.pushgateway:
        overrides.sampler["pushgateway"] = args.pushgateway

    if args.average_die_power is not None:
        overrides.cost["total_power_draw"] = args.average_die_power
    if args.core_count is not None:
        overrides.cost["core_count"] = args.core_count
    if args.attribution_mode:
        overrides.cost["attribution_mode"] = args.attribution_mode

    if args.max_series is not None:
        overrides.labels["max_distinct_series"] = args.max_series
    if args.collision_strategy:
        overrides.labels["name_collision_strategy"] = args.collision_strategy
    if args.include_pid is not None:
        overrides.labels["include_pid"] = args.include_pid
    if args.include_cmdline is not None:
        overrides.labels["include_cmdline"] = args.include_cmdline
    return overrides


def build_sink(config: MonitorConfig, host: HostInfo) -> PrometheusSink | PushGatewaySink:
    """Return the sink selected by ``config``.

    A configured Pushgateway receives every tick; otherwise series are served
    for scraping on ``config.metrics_address``.

    Raises:
        ValueError: If ``metrics_address`` is not ``host:port``.
        OSError: If the metrics address cannot be bound.
    """

    collector = PowerSeriesCollector(host=host)
    if config.pushgateway:
        return PushGatewaySink(
            gateway=config.pushgateway,
            timeout=config.tick_timeout,
            collector=collector,
        )
    sink = PrometheusSink(collector=collector)
    sink.serve(config.metrics_address)
    return sink


async def serve(config: MonitorConfig, stop_event: asyncio.Event) -> None:
    """Run the sampler and its metrics sink until ``stop_event`` is set.

    Args:
        config: Fully resolved configuration.
        stop_event: Event set by signal handlers to request shutdown.

    Raises:
        OSError: If the metrics address cannot be bound.
    """

    source = build_source(config.source)
    jiffy = source.jiffy_seconds if isinstance(source, ProcfsProcessSource) else None
    host = collect_host_info(config.cost_model, jiffy_seconds=jiffy)
    sink = build_sink(config, host)

    sampler = SamplerLoop(source=source, sink=sink, config=config)
    LOGGER.info(
        "Estimating process power",
        extra={
            "total_power_draw": config.cost_model.total_power_draw,
            "core_count": config.cost_model.core_count,
            "per_core_power": config.cost_model.per_core_power,
            "max_distinct_series": config.label_policy.max_distinct_series,
            "pushgateway": config.pushgateway,
        },
    )
    await sampler.start()
    try:
        await stop_event.wait()
    finally:
        await sampler.stop()
        if isinstance(sink, PrometheusSink):
            sink.close()


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for ``procwatt`` and ``python -m procwatt.daemon``.

    Args:
        argv: Optional argument list override.

    Returns:
        Exit status code (``0`` for success).
    """

    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    listener = configure_structured_logging(
        LOGGER, level=getattr(logging, args.log_level)
    )
    try:
        config = load_config(args.config, overrides=cli_overrides(args))
    except (OSError, ValueError) as exc:
        LOGGER.error("Invalid configuration", exc_info=exc)
        shutdown_listeners([listener])
        return 1

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    stop_event = asyncio.Event()

    def _handle_signal(signum: int) -> None:  # pragma: no cover - signal handling
        LOGGER.info("Received signal", extra={"signal": signum})
        stop_event.set()

    def _fallback_signal_handler(
        signum: int, _frame: object | None
    ) -> None:  # pragma: no cover - signal handling
        loop.call_soon_threadsafe(_handle_signal, signum)

    for sig in (signal.SIGTERM, signal.SIGINT):  # pragma: no cover - not in tests
        try:
            loop.add_signal_handler(sig, _handle_signal, sig)
        except NotImplementedError:
            signal.signal(sig, _fallback_signal_handler)

    exit_code = 0
    try:
        loop.run_until_complete(serve(config, stop_event))
    except KeyboardInterrupt:  # pragma: no cover - handled by signal handler
        pass
    except Exception as exc:
        LOGGER.error("Daemon terminated with error", exc_info=exc)
        exit_code = 1
    finally:
        loop.run_until_complete(loop.shutdown_asyncgens())
        loop.close()
        shutdown_listeners([listener])

    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
