"""Message types exchanged between the rover nodes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum


@dataclass(frozen=True)
class Twist:
    """A velocity command: forward speed and yaw rate."""

    linear_x: float = 0.0
    angular_z: float = 0.0


class DiagnosticLevel(IntEnum):
    """Severity of a diagnostic status, with the standard wire values."""

    OK = 0
    WARN = 1
    ERROR = 2
    STALE = 3


@dataclass(frozen=True)
class DiagnosticStatus:
    """State of one monitored component."""

    name: str
    hardware_id: str
    level: DiagnosticLevel
    message: str


@dataclass
class DiagnosticArray:
    """A timestamped collection of diagnostic statuses."""

    stamp: float = 0.0
    statuses: list[DiagnosticStatus] = field(default_factory=list)

    def is_ok(self) -> bool:
        """Return True when every status is at level OK."""
        return all(status.level is DiagnosticLevel.OK for status in self.statuses)