"""Plain data structures shared by the trace indexer and the replay engine.

Events are small frozen dataclasses so they can be compared, hashed and
shared between the prefetch worker and the driving thread without copying.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

UnitKey = Tuple[int, int]

#: Arrival links understood by the trace format. ``R`` marks a locally
#: originated packet with no source unit.
LINKS = ("W", "E", "N", "S", "R")

# Arrival link -> offset of the implied source unit. Links name the port the
# packet came in on, not a compass bearing towards the sender.
_LINK_OFFSETS = {
    "W": (-1, 0),
    "E": (1, 0),
    "N": (0, -1),
    "S": (0, 1),
}


def source_coords(x: int, y: int, link: str) -> Optional[UnitKey]:
    """Return the unit a packet arriving at ``(x, y)`` via ``link`` came from.

    ``None`` is returned for ``R`` (locally originated) and unknown links.
    """

    offset = _LINK_OFFSETS.get(link)
    if offset is None:
        return None
    return x + offset[0], y + offset[1]


def to_grid_coords(x: int, y: int, dim_y: int) -> Tuple[int, int]:
    """Map trace coordinates (``y`` growing upward) to display ``(row, col)``."""

    return dim_y - 1 - y, x


@dataclass(frozen=True)
class LandingEvent:
    """A packet arriving at unit ``(x, y)`` during ``cycle``."""

    cycle: int
    x: int
    y: int
    color: int
    link: str

    @property
    def unit(self) -> UnitKey:
        return self.x, self.y

    @property
    def source(self) -> Optional[UnitKey]:
        """Implied sending unit or ``None`` for local origination."""
        return source_coords(self.x, self.y, self.link)


@dataclass(frozen=True)
class ExecStateEvent:
    """Busy/opcode state reported for unit ``(x, y)`` at ``cycle``."""

    cycle: int
    x: int
    y: int
    busy: bool
    opcode: Optional[str] = None

    @property
    def unit(self) -> UnitKey:
        return self.x, self.y

    @property
    def state(self) -> "UnitState":
        return UnitState(self.busy, self.opcode)

    @property
    def active(self) -> bool:
        """``NOP`` counts as idle for activity purposes."""
        return self.busy and self.opcode != "NOP"


@dataclass(frozen=True)
class UnitState:
    """Renderer-facing state of a single unit."""

    busy: bool = False
    opcode: Optional[str] = None

    @property
    def active(self) -> bool:
        return self.busy and self.opcode != "NOP"


IDLE = UnitState()


@dataclass(frozen=True)
class CycleIndexEntry:
    """Byte range ``[start, end)`` holding every line of ``cycle``."""

    cycle: int
    start: int
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start


@dataclass
class CacheEntry:
    """Parsed events of one cycle as held by the read-ahead cache."""

    cycle: int
    landings: list[LandingEvent] = field(default_factory=list)
    exec_changes: list[ExecStateEvent] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.landings) + len(self.exec_changes)


class PlaybackStatus(Enum):
    """States of the playback scheduler."""

    IDLE = "idle"
    PAUSED = "paused"
    PLAYING = "playing"
    DONE = "done"


@dataclass
class PlaybackState:
    """Logical clock of a loaded session.

    ``current_cycle`` always lies in ``[min_cycle - 1, max_cycle]``;
    while playing, ``anchor`` is the wall-clock time playback was last
    anchored at and ``anchor_cycles`` the number of cycles already credited
    since then. Both are reset whenever the speed or position changes.
    """

    min_cycle: int = 0
    max_cycle: int = 0
    current_cycle: int = -1
    speed: float = 10.0
    status: PlaybackStatus = PlaybackStatus.IDLE
    anchor: float | None = None
    anchor_cycles: int = 0

    @property
    def playing(self) -> bool:
        return self.status is PlaybackStatus.PLAYING

    @property
    def progress(self) -> float:
        """Fraction of the trace already applied, in ``[0, 1]``."""

        span = self.max_cycle - self.min_cycle + 1
        if span <= 0:
            return 0.0
        done = self.current_cycle - self.min_cycle + 1
        return min(max(done / span, 0.0), 1.0)
