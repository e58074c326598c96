"""Public entry points for the :mod:`procwatt` configuration loader."""

from __future__ import annotations

import importlib
from types import ModuleType
from typing import Protocol, cast

from procwatt.config.models import SOURCE_KINDS, MonitorConfig, SourceKind
from procwatt.config.parsing import (
    ConfigOverrides,
    apply_overrides,
    environment_overrides,
    structured_overrides,
)
from procwatt.config.sources import load_structured_config
from procwatt.cost_model import CostModelConfig
from procwatt.settings import ProcwattSettings, get_settings

__all__ = [
    "ConfigOverrides",
    "MonitorConfig",
    "SOURCE_KINDS",
    "SourceKind",
    "detect_core_count",
    "load_config",
]

_PSUTIL_MODULE: ModuleType = importlib.import_module("psutil")


class CpuCountProtocol(Protocol):
    """Subset of psutil used to size the cost model."""

    def cpu_count(self, logical: bool = True) -> int | None:
        """Return the number of CPUs."""


def detect_core_count(psutil_module: CpuCountProtocol | None = None) -> int:
    """Return the host's logical CPU count, falling back to ``1``."""

    module = psutil_module or cast(CpuCountProtocol, _PSUTIL_MODULE)
    count = module.cpu_count(logical=True)
    return count if count and count > 0 else 1


def load_config(
    path: str | None = None,
    *,
    settings: ProcwattSettings | None = None,
    core_count: int | None = None,
    overrides: ConfigOverrides | None = None,
) -> MonitorConfig:
    """Load configuration from defaults, the environment and a file.

    Later sources win: built-in defaults, then environment variables, then
    the configuration file, then ``overrides``. All layers are merged before
    validation, so one layer may complete settings started by another.

    Args:
        path: Optional explicit path to a YAML or JSON file. When omitted
            ``PROCWATT_CONFIG_PATH`` and the default locations are searched.
        settings: Optional pre-instantiated environment settings.
        core_count: Logical CPU count used when no source sets one. Detected
            via psutil when omitted.
        overrides: Highest-precedence values, typically command-line flags.

    Returns:
        Fully populated, validated :class:`MonitorConfig`.

    Raises:
        FileNotFoundError: If an explicitly requested file is missing.
        ValueError: If the merged values are out of range.
    """

    env_settings = settings or get_settings()
    detected = core_count if core_count is not None else detect_core_count()
    base = MonitorConfig(cost_model=CostModelConfig(core_count=detected))
    layers = [environment_overrides(env_settings)]
    structured = load_structured_config(path, env_settings)
    if structured is not None:
        layers.append(structured_overrides(structured))
    if overrides is not None:
        layers.append(overrides)
    return apply_overrides(base, *layers)
