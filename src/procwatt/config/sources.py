"""Configuration file discovery and decoding."""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path
from typing import cast

import yaml

from procwatt.settings import ProcwattSettings

_DEFAULT_CANDIDATES: tuple[Path, ...] = (
    Path("config/procwatt.yml"),
    Path("config/procwatt.yaml"),
    Path("config/procwatt.json"),
    Path("/etc/procwatt/procwatt.yml"),
)


def load_structured_config(
    path: str | None, settings: ProcwattSettings
) -> dict[str, object] | None:
    """Load configuration data from disk.

    Args:
        path: Explicit configuration path provided by the caller.
        settings: Environment-derived settings used for fallback discovery.

    Returns:
        A dictionary representation of the first configuration file found,
        otherwise ``None``.

    Raises:
        FileNotFoundError: If an explicitly requested file does not exist.
    """

    candidates: Iterable[Path]
    explicit = path or settings.config_path
    if explicit:
        explicit_path = Path(explicit)
        if not explicit_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {explicit_path}")
        candidates = (explicit_path,)
    else:
        candidates = _DEFAULT_CANDIDATES

    for candidate in candidates:
        data = _load_config_file(candidate)
        if data is not None:
            return data
    return None


def _load_config_file(path: Path) -> dict[str, object] | None:
    """Load a configuration file based on its suffix.

    Args:
        path: Candidate configuration path.

    Returns:
        Parsed mapping when the file exists and decodes to a mapping,
        otherwise ``None``.
    """

    if not path.exists():
        return None
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None

    suffix = path.suffix.lower()
    if suffix == ".json":
        try:
            data: object = json.loads(text)
        except json.JSONDecodeError:
            return None
    elif suffix in {".yml", ".yaml"}:
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError:
            return None
    else:
        return None
    return _normalize_mapping(data)


def _normalize_mapping(value: object) -> dict[str, object] | None:
    """Restrict a decoded document to a mapping with string keys."""

    if not isinstance(value, dict):
        return None
    value_dict = cast(dict[object, object], value)
    return {key: item for key, item in value_dict.items() if isinstance(key, str)}


__all__ = ["load_structured_config"]
