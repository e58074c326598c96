"""procwatt - per-process power estimation from CPU time."""

from __future__ import annotations

from importlib import import_module
from typing import Any, TYPE_CHECKING

__all__ = [
    "CostModelConfig",
    "LabelPolicy",
    "MonitorConfig",
    "ProcessStateTracker",
    "SamplerLoop",
    "SeriesGovernor",
    "build_cost_model",
    "load_config",
]

if TYPE_CHECKING:
    from .config import MonitorConfig, load_config
    from .cost_model import CostModelConfig, build_cost_model
    from .governor import LabelPolicy, SeriesGovernor
    from .sampler import SamplerLoop
    from .tracker import ProcessStateTracker


def __getattr__(name: str) -> Any:
    """Lazily import submodules so psutil and prometheus_client load on demand."""

    module_map = {
        "CostModelConfig": "cost_model",
        "LabelPolicy": "governor",
        "MonitorConfig": "config",
        "ProcessStateTracker": "tracker",
        "SamplerLoop": "sampler",
        "SeriesGovernor": "governor",
        "build_cost_model": "cost_model",
        "load_config": "config",
    }

    if name not in module_map:
        raise AttributeError(name)

    module = import_module(f".{module_map[name]}", __name__)
    return getattr(module, name)
