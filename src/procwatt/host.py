"""Static host description exported alongside process series."""

from __future__ import annotations

import platform
import socket
from dataclasses import dataclass

from procwatt.cost_model import CostModelConfig


@dataclass(slots=True, frozen=True)
class HostInfo:
    """Operating system and CPU facts describing how estimates were produced."""

    hostname: str
    os: str
    os_version: str
    kernel_version: str
    cpu_model: str
    total_power_draw: float
    per_core_power: float
    core_count: int
    attribution_mode: str
    jiffy_seconds: float | None = None

    def system_labels(self) -> dict[str, str]:
        """Return labels for the host OS info metric."""

        labels = {
            "os": self.os,
            "os_version": self.os_version,
            "kernel_version": self.kernel_version,
        }
        if self.jiffy_seconds is not None:
            labels["jiffy_in_seconds"] = str(self.jiffy_seconds)
        return labels

    def cpu_labels(self) -> dict[str, str]:
        """Return labels for the host CPU info metric."""

        return {
            "model": self.cpu_model,
            "total_power_draw": str(self.total_power_draw),
            "per_core_power": str(self.per_core_power),
            "core_count": str(self.core_count),
            "attribution_mode": self.attribution_mode,
        }


def collect_host_info(
    cost_config: CostModelConfig, *, jiffy_seconds: float | None = None
) -> HostInfo:
    """Describe the current host and the cost model constants in use.

    Args:
        cost_config: Constants the sampler estimates with.
        jiffy_seconds: Clock tick length when CPU time is read from procfs.

    Returns:
        Host description with ``"unknown"`` for facts the platform hides.
    """

    uname = platform.uname()
    return HostInfo(
        hostname=socket.gethostname() or "unknown",
        os=uname.system or "unknown",
        os_version=platform.version() or "unknown",
        kernel_version=uname.release or "unknown",
        cpu_model=platform.processor() or uname.machine or "unknown",
        total_power_draw=cost_config.total_power_draw,
        per_core_power=cost_config.per_core_power,
        core_count=cost_config.core_count,
        attribution_mode=cost_config.attribution_mode,
        jiffy_seconds=jiffy_seconds,
    )


__all__ = ["HostInfo", "collect_host_info"]
