"""psutil-backed process snapshot source."""

from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass, field
from types import ModuleType
from typing import Final, cast

from procwatt.errors import SourceUnavailableError
from procwatt.models import ProcessRecord
from procwatt.sources._psutil_protocols import PsutilProtocol

LOGGER = logging.getLogger(__name__)

_PSUTIL_MODULE: ModuleType = importlib.import_module("psutil")

_ATTRS: Final[tuple[str, ...]] = ("pid", "name", "cpu_times", "create_time", "cmdline")


def _default_psutil() -> PsutilProtocol:
    """Return the psutil module cast to the internal protocol."""

    return cast(PsutilProtocol, _PSUTIL_MODULE)


@dataclass(slots=True)
class PsutilProcessSource:
    """List processes with their cumulative CPU time via ``psutil``.

    Processes that exit or deny access while being read are skipped; only a
    failure to enumerate the table at all is reported.

    Attributes:
        psutil_module: Injected psutil-compatible module.
        logger: Logger used for diagnostics.
    """

    psutil_module: PsutilProtocol = field(default_factory=_default_psutil, repr=False)
    logger: logging.Logger = field(default=LOGGER, repr=False)

    def list_processes(self) -> list[ProcessRecord]:
        """Return one record per readable process.

        ``process_iter`` already drops processes that exit mid-scan and fills
        denied attributes with ``None``; such records are skipped here.

        Raises:
            SourceUnavailableError: If psutil cannot enumerate processes.
        """

        module = self.psutil_module
        records: list[ProcessRecord] = []
        skipped = 0
        try:
            for proc in module.process_iter(attrs=list(_ATTRS)):
                record = _to_record(proc.info)
                if record is None:
                    skipped += 1
                    continue
                records.append(record)
        except (module.Error, OSError) as exc:
            raise SourceUnavailableError(f"Failed to enumerate processes: {exc}") from exc

        if skipped:
            self.logger.debug(
                "Skipped unreadable processes", extra={"skipped": skipped}
            )
        return records


def _to_record(info: dict[str, object]) -> ProcessRecord | None:
    """Convert a psutil ``info`` mapping, or ``None`` when CPU times are missing."""

    cpu_times = info.get("cpu_times")
    create_time = info.get("create_time")
    pid = info.get("pid")
    if cpu_times is None or create_time is None or not isinstance(pid, int):
        return None

    user = float(getattr(cpu_times, "user", 0.0))
    system = float(getattr(cpu_times, "system", 0.0))
    cmdline_parts = info.get("cmdline") or []
    cmdline = " ".join(str(part) for part in cast(list[object], cmdline_parts))
    name = info.get("name") or ""

    return ProcessRecord(
        pid=pid,
        name=str(name),
        cumulative_cpu_time=user + system,
        start_time=float(cast(float, create_time)),
        cmdline=cmdline,
    )


__all__ = ["PsutilProcessSource"]
