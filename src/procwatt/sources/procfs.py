"""Process snapshot source reading ``/proc/<pid>/stat`` directly.

CPU time and start time are reported by the kernel in clock ticks (jiffies);
both are converted to seconds using ``SC_CLK_TCK``. The start time is
measured from boot, which is stable enough to discriminate PID reuse.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from procwatt.errors import SourceUnavailableError
from procwatt.models import ProcessRecord

LOGGER = logging.getLogger(__name__)

# Offsets into the fields following the ")" that closes ``comm``.
_UTIME_INDEX = 11
_STIME_INDEX = 12
_STARTTIME_INDEX = 19


class ProcStatParseError(ValueError):
    """Raised when a ``stat`` file does not have the expected layout."""


def _default_clock_ticks() -> int:
    try:
        return int(os.sysconf("SC_CLK_TCK"))
    except (AttributeError, ValueError, OSError):  # pragma: no cover - non-POSIX
        return 100


@dataclass(slots=True)
class ProcfsProcessSource:
    """List processes by scanning a procfs mount.

    Attributes:
        proc_root: Mount point of procfs.
        clock_ticks: Kernel clock ticks per second.
        read_cmdline: Read ``/proc/<pid>/cmdline`` as well as ``stat``.
        logger: Logger used for diagnostics.
    """

    proc_root: Path = Path("/proc")
    clock_ticks: int = field(default_factory=_default_clock_ticks)
    read_cmdline: bool = True
    logger: logging.Logger = field(default=LOGGER, repr=False)

    def __post_init__(self) -> None:
        if self.clock_ticks <= 0:
            raise ValueError(f"clock_ticks must be positive, got {self.clock_ticks}")

    @property
    def jiffy_seconds(self) -> float:
        """Return the length of one clock tick in seconds."""

        return 1.0 / self.clock_ticks

    def list_processes(self) -> list[ProcessRecord]:
        """Return one record per readable ``/proc/<pid>`` directory.

        Raises:
            SourceUnavailableError: If ``proc_root`` cannot be listed.
        """

        try:
            entries = [entry for entry in self.proc_root.iterdir() if entry.name.isdigit()]
        except OSError as exc:
            raise SourceUnavailableError(
                f"Failed to list process directory {self.proc_root}: {exc}"
            ) from exc

        records: list[ProcessRecord] = []
        for entry in entries:
            try:
                record = self._read_process(entry)
            except (OSError, ProcStatParseError) as exc:
                # Processes routinely exit between listing and reading.
                self.logger.debug(
                    "Skipping unreadable process",
                    extra={"path": str(entry), "error": str(exc)},
                )
                continue
            records.append(record)
        return records

    def _read_process(self, directory: Path) -> ProcessRecord:
        stat_text = (directory / "stat").read_text(encoding="utf-8", errors="replace")
        pid, name, fields = parse_stat(stat_text)
        try:
            utime = int(fields[_UTIME_INDEX])
            stime = int(fields[_STIME_INDEX])
            start_ticks = int(fields[_STARTTIME_INDEX])
        except (IndexError, ValueError) as exc:
            raise ProcStatParseError(f"Malformed stat for {directory}") from exc

        cmdline = ""
        if self.read_cmdline:
            try:
                raw = (directory / "cmdline").read_bytes()
            except OSError:
                raw = b""
            cmdline = " ".join(
                part.decode("utf-8", errors="replace")
                for part in raw.split(b"\0")
                if part
            )

        return ProcessRecord(
            pid=pid,
            name=name,
            cumulative_cpu_time=(utime + stime) * self.jiffy_seconds,
            start_time=start_ticks * self.jiffy_seconds,
            cmdline=cmdline,
        )


def parse_stat(text: str) -> tuple[int, str, list[str]]:
    """Split a ``/proc/<pid>/stat`` line into pid, comm and trailing fields.

    ``comm`` may itself contain spaces and parentheses, so it is delimited by
    the first ``(`` and the last ``)``.

    Raises:
        ProcStatParseError: If the line lacks the ``pid (comm) ...`` shape.
    """

    open_paren = text.find("(")
    close_paren = text.rfind(")")
    if open_paren == -1 or close_paren < open_paren:
        raise ProcStatParseError("stat line is missing the comm field")
    try:
        pid = int(text[:open_paren].strip())
    except ValueError as exc:
        raise ProcStatParseError("stat line has a non-numeric pid") from exc
    name = text[open_paren + 1 : close_paren]
    fields = text[close_paren + 1 :].split()
    return pid, name, fields


__all__ = ["ProcStatParseError", "ProcfsProcessSource", "parse_stat"]
