"""Cost models converting CPU-time deltas into power and energy estimates.

Every model assumes power scales with CPU time alone. Frequency scaling,
idle states and shared uncore power are ignored, so estimates overstate the
draw of lightly loaded cores. The models are strategies: the tracker and the
sampler only see :class:`CostModel` and never the physics behind it.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from bisect import bisect_right
from dataclasses import dataclass
from typing import Final, Literal

from procwatt.errors import InvalidIntervalError
from procwatt.models import CPUDelta, PowerEstimate

AttributionMode = Literal[
    "proportional-to-cpu-time",
    "proportional-to-cpu-time-per-core",
    "calibration-table",
]

ATTRIBUTION_MODES: Final[tuple[str, ...]] = (
    "proportional-to-cpu-time",
    "proportional-to-cpu-time-per-core",
    "calibration-table",
)

DEFAULT_TOTAL_POWER_DRAW: Final[float] = 35.0

CalibrationPoint = tuple[float, float]


@dataclass(slots=True, frozen=True)
class CostModelConfig:
    """Operator-supplied constants for a cost model.

    Attributes:
        total_power_draw: Package power in watts at full utilisation, for
            example the CPU's TDP.
        core_count: Logical CPU count used to normalise utilisation.
        attribution_mode: Name of the model built by :func:`build_cost_model`.
        calibration_table: ``(utilisation, watts)`` points describing the
            draw of a single core, sorted by utilisation within ``[0, 1]``.
            Only used by the ``calibration-table`` mode.
    """

    total_power_draw: float = DEFAULT_TOTAL_POWER_DRAW
    core_count: int = 1
    attribution_mode: AttributionMode = "proportional-to-cpu-time"
    calibration_table: tuple[CalibrationPoint, ...] = ()

    def __post_init__(self) -> None:
        if self.total_power_draw <= 0:
            msg = f"total_power_draw must be positive, got {self.total_power_draw}"
            raise ValueError(msg)
        if self.core_count < 1:
            msg = f"core_count must be at least 1, got {self.core_count}"
            raise ValueError(msg)
        if self.attribution_mode not in ATTRIBUTION_MODES:
            msg = f"Unknown attribution mode: {self.attribution_mode!r}"
            raise ValueError(msg)
        if self.attribution_mode == "calibration-table":
            _validate_calibration_table(self.calibration_table)

    @property
    def per_core_power(self) -> float:
        """Return the share of ``total_power_draw`` attributed to one core."""

        return self.total_power_draw / self.core_count


class CostModel(ABC):
    """Strategy turning a CPU delta into a power estimate."""

    @abstractmethod
    def power_watts(self, busy_cores: float, config: CostModelConfig) -> float:
        """Return average power for ``busy_cores`` worth of CPU time.

        Args:
            busy_cores: CPU seconds consumed per wall-clock second.
            config: Constants describing the host.
        """

    def estimate(self, delta: CPUDelta, config: CostModelConfig) -> PowerEstimate:
        """Estimate the power and energy behind ``delta``.

        Args:
            delta: CPU time consumed by one process over one interval.
            config: Constants describing the host.

        Returns:
            Estimate stamped with the tick that closed the interval.

        Raises:
            InvalidIntervalError: If the interval is not strictly positive.
        """

        if delta.elapsed_wall_time <= 0:
            raise InvalidIntervalError(
                f"Non-positive interval {delta.elapsed_wall_time} for pid "
                f"{delta.identity.pid}"
            )
        busy_cores = delta.delta_cpu_time / delta.elapsed_wall_time
        power = self.power_watts(busy_cores, config)
        return PowerEstimate(
            identity=delta.identity,
            name=delta.name,
            estimated_power=power,
            estimated_energy=power * delta.elapsed_wall_time,
            cpu_time=delta.delta_cpu_time,
            tick_timestamp=delta.tick,
            cmdline=delta.cmdline,
        )


class ProportionalCpuTimeModel(CostModel):
    """Uniform draw per CPU second: ``P = total * busy_cores / core_count``."""

    def power_watts(self, busy_cores: float, config: CostModelConfig) -> float:
        return config.total_power_draw * busy_cores / config.core_count


class PerCoreCpuTimeModel(CostModel):
    """Per-core share of the package, with busy cores capped at the core count."""

    def power_watts(self, busy_cores: float, config: CostModelConfig) -> float:
        occupied = min(max(busy_cores, 0.0), float(config.core_count))
        return config.per_core_power * occupied


class CalibrationTableModel(CostModel):
    """Interpolate single-core draw from a measured utilisation table.

    Utilisation is spread evenly across the cores the process occupied, so a
    process using 1.5 cores is billed as two cores at 75% each.
    """

    def power_watts(self, busy_cores: float, config: CostModelConfig) -> float:
        occupied = min(max(busy_cores, 0.0), float(config.core_count))
        if occupied == 0.0:
            return 0.0
        cores = max(1, math.ceil(occupied))
        per_core = interpolate_watts(config.calibration_table, occupied / cores)
        return per_core * cores


def interpolate_watts(
    table: tuple[CalibrationPoint, ...], utilisation: float
) -> float:
    """Return watts at ``utilisation`` by linear interpolation over ``table``.

    Values outside the table's range are clamped to its end points.
    """

    _validate_calibration_table(table)
    xs = [point[0] for point in table]
    if utilisation <= xs[0]:
        return table[0][1]
    if utilisation >= xs[-1]:
        return table[-1][1]
    index = bisect_right(xs, utilisation)
    (x0, y0), (x1, y1) = table[index - 1], table[index]
    if x1 == x0:
        return y1
    return y0 + (y1 - y0) * (utilisation - x0) / (x1 - x0)


def _validate_calibration_table(table: tuple[CalibrationPoint, ...]) -> None:
    if not table:
        raise ValueError("calibration-table mode requires at least one point")
    previous = -1.0
    for utilisation, watts in table:
        if not 0.0 <= utilisation <= 1.0:
            raise ValueError(f"Calibration utilisation out of range: {utilisation}")
        if utilisation < previous:
            raise ValueError("Calibration table must be sorted by utilisation")
        if watts < 0:
            raise ValueError(f"Calibration watts must be non-negative: {watts}")
        previous = utilisation


_MODELS: Final[dict[str, type[CostModel]]] = {
    "proportional-to-cpu-time": ProportionalCpuTimeModel,
    "proportional-to-cpu-time-per-core": PerCoreCpuTimeModel,
    "calibration-table": CalibrationTableModel,
}


def build_cost_model(config: CostModelConfig) -> CostModel:
    """Return the cost model selected by ``config.attribution_mode``."""

    return _MODELS[config.attribution_mode]()


__all__ = [
    "ATTRIBUTION_MODES",
    "AttributionMode",
    "CalibrationPoint",
    "CalibrationTableModel",
    "CostModel",
    "CostModelConfig",
    "DEFAULT_TOTAL_POWER_DRAW",
    "PerCoreCpuTimeModel",
    "ProportionalCpuTimeModel",
    "build_cost_model",
    "interpolate_watts",
]
