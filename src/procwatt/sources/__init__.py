"""Process snapshot sources."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from procwatt.models import ProcessRecord

__all__ = ["ProcessSnapshotSource", "build_source"]


class ProcessSnapshotSource(Protocol):
    """Capability listing the processes currently running on the host."""

    def list_processes(self) -> Sequence[ProcessRecord]:
        """Return one record per live process.

        Raises:
            SourceUnavailableError: If the process table cannot be read.
        """


def build_source(kind: str) -> ProcessSnapshotSource:
    """Return the snapshot source registered under ``kind``.

    Args:
        kind: ``"psutil"`` or ``"procfs"``.

    Raises:
        ValueError: If ``kind`` is not a known source.
    """

    if kind == "psutil":
        from procwatt.sources.psutil_source import PsutilProcessSource

        return PsutilProcessSource()
    if kind == "procfs":
        from procwatt.sources.procfs import ProcfsProcessSource

        return ProcfsProcessSource()
    raise ValueError(f"Unknown process source: {kind!r}")
