"""Prometheus exposition of governed power series.

:class:`PowerSeriesCollector` is registered with a ``prometheus_client``
registry and renders whatever the sampler last published. Publishing swaps a
fresh snapshot in under a short lock, so scrapes never observe a partial
tick.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from threading import Lock
from typing import Final

from prometheus_client import CollectorRegistry, push_to_gateway, start_http_server
from prometheus_client.core import (
    CounterMetricFamily,
    GaugeMetricFamily,
    InfoMetricFamily,
    Metric,
)

from procwatt.errors import SinkUnavailableError
from procwatt.host import HostInfo
from procwatt.models import EmittedSeries, LabelSet, SamplerStats

LOGGER = logging.getLogger(__name__)

DEFAULT_NAMESPACE: Final[str] = "procwatt"


@dataclass(slots=True, eq=False)
class PowerSeriesCollector:
    """Custom collector exposing per-process power, energy and CPU time.

    Energy and CPU time are exported as counters accumulated per label key
    since the collector was created. The governor bounds the number of keys,
    so the totals map is bounded too.

    Attributes:
        namespace: Prefix applied to every metric name.
        host: Optional host description exported as info metrics.
        const_labels: Labels added to every sample, ``hostname`` by default
            when ``host`` is given.
    """

    namespace: str = DEFAULT_NAMESPACE
    host: HostInfo | None = None
    const_labels: dict[str, str] = field(default_factory=dict)
    _series: tuple[EmittedSeries, ...] = field(init=False, default=())
    _energy_totals: dict[LabelSet, float] = field(init=False, default_factory=dict)
    _cpu_totals: dict[LabelSet, float] = field(init=False, default_factory=dict)
    _stats: SamplerStats | None = field(init=False, default=None)
    _lock: Lock = field(init=False, default_factory=Lock, repr=False)

    def __post_init__(self) -> None:
        if self.host is not None and "hostname" not in self.const_labels:
            self.const_labels["hostname"] = self.host.hostname

    def update(
        self, series: Sequence[EmittedSeries], stats: SamplerStats | None = None
    ) -> None:
        """Swap in a new tick's series and fold them into the counters."""

        snapshot = tuple(series)
        with self._lock:
            energy_totals = dict(self._energy_totals)
            cpu_totals = dict(self._cpu_totals)
            for item in snapshot:
                energy_totals[item.labels] = (
                    energy_totals.get(item.labels, 0.0) + item.energy_joules
                )
                cpu_totals[item.labels] = cpu_totals.get(item.labels, 0.0) + item.cpu_seconds
            self._series = snapshot
            self._energy_totals = energy_totals
            self._cpu_totals = cpu_totals
            if stats is not None:
                self._stats = stats

    def current_snapshot(self) -> tuple[EmittedSeries, ...]:
        """Return the series from the most recent update."""

        with self._lock:
            return self._series

    def energy_total(self, labels: LabelSet) -> float:
        """Return the accumulated energy in joules for ``labels``."""

        with self._lock:
            return self._energy_totals.get(labels, 0.0)

    def describe(self) -> list[Metric]:
        # Families depend on runtime label sets; skip registry introspection.
        return []

    def collect(self) -> Iterator[Metric]:
        """Yield metric families for the latest snapshot."""

        with self._lock:
            series = self._series
            energy_totals = self._energy_totals
            cpu_totals = self._cpu_totals
            stats = self._stats

        prefix = self.namespace
        power = GaugeMetricFamily(
            f"{prefix}_process_power_watts",
            "Estimated average power of the process over the last tick",
        )
        for item in series:
            power.add_sample(
                f"{prefix}_process_power_watts",
                self._labels(item.labels),
                item.power_watts,
            )
        yield power

        energy = CounterMetricFamily(
            f"{prefix}_process_energy_joules",
            "Estimated energy consumed by the process",
        )
        for labels, total in energy_totals.items():
            energy.add_sample(
                f"{prefix}_process_energy_joules_total", self._labels(labels), total
            )
        yield energy

        cpu = CounterMetricFamily(
            f"{prefix}_process_cpu_seconds",
            "CPU time spent executing the process while monitored",
        )
        for labels, total in cpu_totals.items():
            cpu.add_sample(
                f"{prefix}_process_cpu_seconds_total", self._labels(labels), total
            )
        yield cpu

        if self.host is not None:
            system = InfoMetricFamily(f"{prefix}_system", "Host OS information")
            system.add_metric([], {**self.const_labels, **self.host.system_labels()})
            yield system
            cpu_info = InfoMetricFamily(f"{prefix}_cpu", "Host CPU information")
            cpu_info.add_metric([], {**self.const_labels, **self.host.cpu_labels()})
            yield cpu_info

        if stats is not None:
            yield from self._stats_families(stats)

    def _labels(self, labels: LabelSet) -> dict[str, str]:
        return {**self.const_labels, **dict(labels)}

    def _stats_families(self, stats: SamplerStats) -> Iterator[Metric]:
        prefix = f"{self.namespace}_sampler"
        for key, value in stats.to_dict().items():
            if key == "tracked_processes":
                family: Metric = GaugeMetricFamily(
                    f"{prefix}_{key}", "Processes currently holding a CPU baseline"
                )
                family.add_sample(f"{prefix}_{key}", dict(self.const_labels), value)
            else:
                family = CounterMetricFamily(
                    f"{prefix}_{key}", f"Sampler {key.replace('_', ' ')}"
                )
                family.add_sample(
                    f"{prefix}_{key}_total", dict(self.const_labels), value
                )
            yield family


@dataclass(slots=True)
class PrometheusSink:
    """Pull-based sink served over HTTP by ``prometheus_client``.

    Attributes:
        collector: Collector rendering the published series.
        registry: Registry the collector is registered with.
    """

    collector: PowerSeriesCollector = field(default_factory=PowerSeriesCollector)
    registry: CollectorRegistry = field(default_factory=CollectorRegistry)
    logger: logging.Logger = field(default=LOGGER, repr=False)
    _server: object | None = field(init=False, default=None, repr=False)

    def __post_init__(self) -> None:
        self.registry.register(self.collector)

    def publish(
        self, series: Sequence[EmittedSeries], stats: SamplerStats | None = None
    ) -> None:
        self.collector.update(series, stats)

    def current_snapshot(self) -> tuple[EmittedSeries, ...]:
        """Return the series a scrape would currently expose."""

        return self.collector.current_snapshot()

    def serve(self, address: str) -> None:
        """Start the HTTP exposition server on ``host:port``.

        Raises:
            ValueError: If ``address`` is not ``host:port``.
            OSError: If the address cannot be bound.
        """

        host, port = parse_address(address)
        server, _thread = start_http_server(port, addr=host, registry=self.registry)
        self._server = server
        self.logger.info(
            "Serving metrics", extra={"address": host, "port": port}
        )

    def close(self) -> None:
        """Stop the HTTP server if :meth:`serve` started one."""

        server = self._server
        self._server = None
        if server is not None:
            server.shutdown()  # type: ignore[attr-defined]
            server.server_close()  # type: ignore[attr-defined]


@dataclass(slots=True)
class PushGatewaySink:
    """Push-based sink sending each tick to a Prometheus Pushgateway.

    Attributes:
        gateway: Pushgateway address, ``host:port`` or URL.
        job: Job label used for the grouping key.
        timeout: Per-push timeout in seconds.
    """

    gateway: str
    job: str = "procwatt"
    timeout: float = 5.0
    collector: PowerSeriesCollector = field(default_factory=PowerSeriesCollector)
    registry: CollectorRegistry = field(default_factory=CollectorRegistry)

    def __post_init__(self) -> None:
        self.registry.register(self.collector)

    def publish(
        self, series: Sequence[EmittedSeries], stats: SamplerStats | None = None
    ) -> None:
        self.collector.update(series, stats)
        try:
            push_to_gateway(
                self.gateway, job=self.job, registry=self.registry, timeout=self.timeout
            )
        except OSError as exc:
            raise SinkUnavailableError(
                f"Failed to push metrics to {self.gateway}: {exc}"
            ) from exc


def parse_address(address: str) -> tuple[str, int]:
    """Split ``host:port`` into its parts.

    Raises:
        ValueError: If the port is missing or not an integer.
    """

    host, sep, port_text = address.rpartition(":")
    if not sep or not port_text.isdigit():
        raise ValueError(f"Expected host:port, got {address!r}")
    return host.strip("[]") or "0.0.0.0", int(port_text)


__all__ = [
    "DEFAULT_NAMESPACE",
    "PowerSeriesCollector",
    "PrometheusSink",
    "PushGatewaySink",
    "parse_address",
]
