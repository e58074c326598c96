"""Override helpers turning settings and config files into a MonitorConfig.

Each layer (environment, configuration file, command line) is first reduced
to a :class:`ConfigOverrides` of plain values. Layers are merged in order and
the nested configuration objects are built once from the merged values, so
validation only ever sees the combined result.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any, cast

from procwatt.config.models import MonitorConfig
from procwatt.cost_model import CalibrationPoint
from procwatt.settings import ProcwattSettings


@dataclass(slots=True)
class ConfigOverrides:
    """Values supplied by one configuration layer.

    Attributes:
        sampler: Top-level :class:`MonitorConfig` fields.
        cost: :class:`CostModelConfig` fields.
        labels: :class:`LabelPolicy` fields.
    """

    sampler: dict[str, Any] = field(default_factory=dict)
    cost: dict[str, Any] = field(default_factory=dict)
    labels: dict[str, Any] = field(default_factory=dict)

    def update(self, other: ConfigOverrides) -> None:
        """Overlay ``other`` onto this layer, later values winning."""

        self.sampler.update(other.sampler)
        self.cost.update(other.cost)
        self.labels.update(other.labels)


def environment_overrides(settings: ProcwattSettings) -> ConfigOverrides:
    """Collect overrides from environment-derived settings.

    Args:
        settings: Environment-derived settings.

    Returns:
        Overrides for every setting that was present and well formed.
    """

    overrides = ConfigOverrides()
    if settings.metrics_address:
        overrides.sampler["metrics_address"] = settings.metrics_address
    if settings.collection_interval_ms is not None:
        overrides.sampler["poll_interval"] = settings.collection_interval_ms / 1000.0
    if settings.source:
        overrides.sampler["source"] = settings.source
    if settings.pushgateway:
        overrides.sampler["pushgateway"] = settings.pushgateway

    if settings.average_die_power is not None:
        overrides.cost["total_power_draw"] = settings.average_die_power
    if settings.core_count is not None:
        overrides.cost["core_count"] = settings.core_count
    if settings.attribution_mode:
        overrides.cost["attribution_mode"] = settings.attribution_mode

    if settings.max_distinct_series is not None:
        overrides.labels["max_distinct_series"] = settings.max_distinct_series
    if settings.include_pid is not None:
        overrides.labels["include_pid"] = settings.include_pid
    return overrides


def structured_overrides(data: Mapping[str, object]) -> ConfigOverrides:
    """Collect overrides from a decoded configuration file.

    Recognised sections are ``sampler``, ``cost_model`` and ``labels``.
    Values of the wrong type are ignored.

    Args:
        data: Mapping parsed from the configuration file.

    Returns:
        Overrides for every recognised, well-typed value.
    """

    overrides = ConfigOverrides()
    section = _expect_mapping(data.get("sampler"))
    if section is not None:
        _copy_float(section, "poll_interval", overrides.sampler)
        _copy_float(section, "tick_timeout", overrides.sampler)
        _copy_int(section, "eviction_grace_ticks", overrides.sampler)
        _copy_int(section, "max_sink_backoff_ticks", overrides.sampler)
        _copy_str(section, "source", overrides.sampler)
        _copy_str(section, "metrics_address", overrides.sampler)
        _copy_str(section, "pushgateway", overrides.sampler)

    section = _expect_mapping(data.get("cost_model"))
    if section is not None:
        _copy_float(section, "total_power_draw", overrides.cost)
        _copy_int(section, "core_count", overrides.cost)
        _copy_str(section, "attribution_mode", overrides.cost)
        table = _coerce_table(section.get("calibration_table"))
        if table is not None:
            overrides.cost["calibration_table"] = table

    section = _expect_mapping(data.get("labels"))
    if section is not None:
        for key in ("include_pid", "include_name", "include_cmdline"):
            value = section.get(key)
            if isinstance(value, bool):
                overrides.labels[key] = value
        _copy_int(section, "max_distinct_series", overrides.labels)
        _copy_str(section, "name_collision_strategy", overrides.labels)
    return overrides


def apply_overrides(config: MonitorConfig, *layers: ConfigOverrides) -> MonitorConfig:
    """Merge ``layers`` in order and apply them to ``config`` in one step.

    Args:
        config: Base configuration instance.
        *layers: Overrides, lowest precedence first.

    Returns:
        Configuration with every layer applied.

    Raises:
        ValueError: If the merged values form an invalid configuration.
    """

    merged = ConfigOverrides()
    for layer in layers:
        merged.update(layer)

    cost_model = (
        replace(config.cost_model, **merged.cost) if merged.cost else config.cost_model
    )
    label_policy = (
        replace(config.label_policy, **merged.labels)
        if merged.labels
        else config.label_policy
    )
    return replace(
        config, cost_model=cost_model, label_policy=label_policy, **merged.sampler
    )


def _expect_mapping(value: object) -> Mapping[str, object] | None:
    if isinstance(value, Mapping):
        return cast(Mapping[str, object], value)
    return None


def _copy_float(section: Mapping[str, object], key: str, target: dict[str, Any]) -> None:
    value = section.get(key)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        target[key] = float(value)


def _copy_int(section: Mapping[str, object], key: str, target: dict[str, Any]) -> None:
    value = section.get(key)
    if isinstance(value, int) and not isinstance(value, bool):
        target[key] = value


def _copy_str(section: Mapping[str, object], key: str, target: dict[str, Any]) -> None:
    value = section.get(key)
    if isinstance(value, str) and value:
        target[key] = value


def _coerce_table(value: object) -> tuple[CalibrationPoint, ...] | None:
    """Convert ``[[utilisation, watts], ...]`` into calibration points."""

    if not isinstance(value, Sequence) or isinstance(value, str):
        return None
    points: list[CalibrationPoint] = []
    for item in value:
        if not isinstance(item, Sequence) or isinstance(item, str) or len(item) != 2:
            return None
        utilisation, watts = item
        if not all(
            isinstance(number, (int, float)) and not isinstance(number, bool)
            for number in (utilisation, watts)
        ):
            return None
        points.append((float(utilisation), float(watts)))
    return tuple(points)


__all__ = [
    "ConfigOverrides",
    "apply_overrides",
    "environment_overrides",
    "structured_overrides",
]
