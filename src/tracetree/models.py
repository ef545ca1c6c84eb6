"""Data models for tracetree."""

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(slots=True, frozen=True)
class ProcessNode:
    """Immutable record of one process and the processes it spawned."""

    pid: int
    cmdline: tuple[str, ...]
    started: datetime  # UTC, aware
    ended: datetime
    children: tuple["ProcessNode", ...] = ()

    def count(self) -> int:
        """Return the number of nodes in this subtree, including self."""
        total = 0
        stack = [self]
        while stack:
            node = stack.pop()
            total += 1
            stack.extend(node.children)
        return total


@dataclass(slots=True, frozen=True)
class Row:
    """Display-ready representation of a single process."""

    pid: int
    cmd: str
    cmdline: str
    start: datetime
    end: datetime
    elapsed: str  # e.g. "1.500s"

    @property
    def duration_ms(self) -> float:
        """Duration of the process in milliseconds."""
        return (self.end - self.start) / timedelta(milliseconds=1)


@dataclass(slots=True, frozen=True)
class LayoutRow:
    """A Row placed on the timeline."""

    row: Row
    offset_px: float
    raw_width_px: float
    width_px: float  # raw_width_px with the minimum bar width applied
    start_label: str  # elapsed since origin
    end_label: str

    def fields(self) -> dict[str, str]:
        """Map each displayed attribute name to its text."""
        return {
            "pid": str(self.row.pid),
            "cmd": self.row.cmd,
            "cmdline": self.row.cmdline,
            "start": str(self.row.start),
            "end": str(self.row.end),
            "elapsed": self.row.elapsed,
            "startpretty": self.start_label,
            "endpretty": self.end_label,
        }
