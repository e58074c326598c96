"""Environment-backed settings primitives for :mod:`procwatt`."""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ["ProcwattSettings", "get_settings"]


class ProcwattSettings(BaseSettings):
    """Expose environment-derived configuration knobs for procwatt.

    Every environment lookup goes through this class. Malformed numeric values
    are treated as unset rather than aborting start-up.

    Attributes:
        metrics_address: ``host:port`` the exposition endpoint binds to.
        collection_interval_ms: Polling interval in milliseconds.
        average_die_power: Package power in watts at full utilisation.
        core_count: Override for the logical CPU count.
        attribution_mode: Cost model attribution mode.
        max_distinct_series: Lifetime ceiling on emitted label keys.
        include_pid: Whether series carry a ``pid`` label.
        source: Process snapshot source, ``psutil`` or ``procfs``.
        config_path: Explicit path to a YAML or JSON configuration file.
        pushgateway: Pushgateway address to push to instead of serving.
    """

    metrics_address: str | None = Field(default=None, alias="METRICS_ADDRESS")
    collection_interval_ms: float | None = Field(
        default=None, alias="COLLECTION_INTERVAL"
    )
    average_die_power: float | None = Field(default=None, alias="AVERAGE_DIE_POWER")
    core_count: int | None = Field(default=None, alias="CPU_CORE_COUNT")
    attribution_mode: str | None = Field(
        default=None, alias="PROCWATT_ATTRIBUTION_MODE"
    )
    max_distinct_series: int | None = Field(default=None, alias="PROCWATT_MAX_SERIES")
    include_pid: bool | None = Field(default=None, alias="PROCWATT_INCLUDE_PID")
    source: str | None = Field(default=None, alias="PROCWATT_SOURCE")
    config_path: str | None = Field(default=None, alias="PROCWATT_CONFIG_PATH")
    pushgateway: str | None = Field(default=None, alias="PROCWATT_PUSHGATEWAY")

    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    @field_validator("collection_interval_ms", "average_die_power", mode="before")
    @classmethod
    def _parse_optional_float(cls, value: object) -> float | None:
        """Parse optional float fields while tolerating malformed input.

        Args:
            value: Raw environment value.

        Returns:
            Parsed positive float when conversion succeeds, otherwise ``None``.
        """

        if value is None:
            return None
        if isinstance(value, (int, float)):
            parsed = float(value)
        elif isinstance(value, str):
            try:
                parsed = float(value.strip())
            except ValueError:
                return None
        else:
            return None
        return parsed if parsed > 0 else None

    @field_validator("core_count", "max_distinct_series", mode="before")
    @classmethod
    def _parse_optional_int(cls, value: object) -> int | None:
        """Parse optional positive integer fields while tolerating bad input."""

        if value is None:
            return None
        parsed: int | None = None
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            parsed = value
        elif isinstance(value, float) and value.is_integer():
            parsed = int(value)
        elif isinstance(value, str):
            try:
                parsed = int(value.strip())
            except ValueError:
                return None
        if parsed is None or parsed < 1:
            return None
        return parsed

    @field_validator("include_pid", mode="before")
    @classmethod
    def _parse_optional_bool(cls, value: object) -> bool | None:
        if value is None or isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in {"1", "true", "yes", "on"}:
            return True
        if text in {"0", "false", "no", "off"}:
            return False
        return None


def get_settings() -> ProcwattSettings:
    """Return a :class:`ProcwattSettings` instance.

    Returns:
        Settings parsed from environment variables.
    """

    return ProcwattSettings()
