"""Typed configuration container handed to the sampler at start-up."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Final, Literal

from procwatt.cost_model import CostModelConfig
from procwatt.governor import LabelPolicy
from procwatt.tracker import DEFAULT_EVICTION_GRACE_TICKS

SourceKind = Literal["psutil", "procfs"]

SOURCE_KINDS: Final[tuple[str, ...]] = ("psutil", "procfs")


@dataclass(slots=True, frozen=True)
class MonitorConfig:
    """Complete configuration for one sampler instance.

    Attributes:
        poll_interval: Seconds between tick starts.
        tick_timeout: Upper bound in seconds on each source read and each
            sink publish.
        eviction_grace_ticks: Consecutive missed snapshots before a process
            baseline is discarded.
        max_sink_backoff_ticks: Cap on the ticks skipped between publish
            attempts after repeated sink failures.
        source: Process snapshot source to build.
        metrics_address: ``host:port`` served by the Prometheus sink.
        pushgateway: Pushgateway address. When set, each tick is pushed there
            instead of being served on ``metrics_address``.
        cost_model: Cost model constants.
        label_policy: Label and cardinality policy.
    """

    poll_interval: float = 0.1
    tick_timeout: float = 5.0
    eviction_grace_ticks: int = DEFAULT_EVICTION_GRACE_TICKS
    max_sink_backoff_ticks: int = 32
    source: SourceKind = "psutil"
    metrics_address: str = "127.0.0.1:9090"
    pushgateway: str | None = None
    cost_model: CostModelConfig = field(default_factory=CostModelConfig)
    label_policy: LabelPolicy = field(default_factory=LabelPolicy)

    def __post_init__(self) -> None:
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {self.poll_interval}")
        if self.tick_timeout <= 0:
            raise ValueError(f"tick_timeout must be positive, got {self.tick_timeout}")
        if self.eviction_grace_ticks < 1:
            msg = (
                "eviction_grace_ticks must be at least 1, "
                f"got {self.eviction_grace_ticks}"
            )
            raise ValueError(msg)
        if self.max_sink_backoff_ticks < 1:
            msg = (
                "max_sink_backoff_ticks must be at least 1, "
                f"got {self.max_sink_backoff_ticks}"
            )
            raise ValueError(msg)
        if self.source not in SOURCE_KINDS:
            raise ValueError(f"Unknown process source: {self.source!r}")


__all__ = ["MonitorConfig", "SOURCE_KINDS", "SourceKind"]
