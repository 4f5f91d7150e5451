"""One-pass trace indexing.

:func:`build_index` streams a trace once and produces a :class:`TraceIndex`
holding

* a :class:`CycleIndex` of ``(cycle, byte range)`` blocks, one per cycle that
  carries at least one event, stored as read-only numpy arrays, and
* a per-unit transition log of busy/opcode changes used to reconstruct unit
  state at any cycle by binary search.

Memory use is proportional to the number of event-bearing cycles and state
transitions, never to the file size.
"""

from __future__ import annotations

import logging
from bisect import bisect_right
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional

import numpy as np

from .models import IDLE, CycleIndexEntry, ExecStateEvent, UnitKey, UnitState
from .scanner import LineKind, LogScanner, ScannedLine, ScanStats
from .source import TraceSource, open_source

logger = logging.getLogger(__name__)


def _frozen(values: List[int]) -> np.ndarray:
    arr = np.asarray(values, dtype=np.int64)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class CycleIndex:
    """Struct-of-arrays list of event-bearing cycle blocks.

    ``cycles`` is strictly increasing; block ``i`` spans bytes
    ``[starts[i], ends[i])`` of the source.
    """

    cycles: np.ndarray
    starts: np.ndarray
    ends: np.ndarray

    @classmethod
    def empty(cls) -> "CycleIndex":
        return cls(_frozen([]), _frozen([]), _frozen([]))

    def __len__(self) -> int:
        return int(self.cycles.shape[0])

    def __getitem__(self, pos: int) -> CycleIndexEntry:
        return CycleIndexEntry(
            int(self.cycles[pos]), int(self.starts[pos]), int(self.ends[pos])
        )

    def __iter__(self) -> Iterator[CycleIndexEntry]:
        for pos in range(len(self)):
            yield self[pos]

    def cycle_at(self, pos: int) -> int:
        return int(self.cycles[pos])

    def byte_span(self, from_pos: int, to_pos: int) -> int:
        """Number of bytes covered by blocks ``from_pos..to_pos`` inclusive."""
        return int(self.ends[to_pos] - self.starts[from_pos])


def find_cycle_index(index: CycleIndex, cycle: int) -> int:
    """Return the position of ``cycle`` in ``index`` or ``-1`` if absent."""

    pos = int(np.searchsorted(index.cycles, cycle, side="left"))
    if pos < len(index) and int(index.cycles[pos]) == cycle:
        return pos
    return -1


def find_cycle_index_ge(index: CycleIndex, cycle: int) -> int:
    """Return the first position whose cycle is ``>= cycle`` (``len`` if none)."""

    return int(np.searchsorted(index.cycles, cycle, side="left"))


def find_cycle_index_le(index: CycleIndex, cycle: int) -> int:
    """Return the last position whose cycle is ``<= cycle`` (``-1`` if none)."""

    return int(np.searchsorted(index.cycles, cycle, side="right")) - 1


class CycleIndexBuilder:
    """Group scanned lines into per-cycle byte blocks.

    A block opens on the first line declaring a new cycle and closes when a
    line declares a different one. Only blocks that saw a qualifying event are
    kept, so gaps in the trace cost nothing.
    """

    def __init__(self) -> None:
        self._cycles: List[int] = []
        self._starts: List[int] = []
        self._ends: List[int] = []
        self._open_cycle: Optional[int] = None
        self._open_start = 0
        self._has_events = False
        self.out_of_order = 0

    def feed(self, line: ScannedLine) -> None:
        if line.cycle is not None and line.cycle != self._open_cycle:
            self._close(line.start)
            self._open_cycle = line.cycle
            self._open_start = line.start
            self._has_events = False
        if line.event is not None and self._open_cycle is not None:
            self._has_events = True

    def _close(self, end: int) -> None:
        if self._open_cycle is None or not self._has_events:
            return
        if self._cycles and self._open_cycle <= self._cycles[-1]:
            self.out_of_order += 1
            logger.debug(
                "cycle %d appears after cycle %d", self._open_cycle, self._cycles[-1]
            )
            return
        self._cycles.append(self._open_cycle)
        self._starts.append(self._open_start)
        self._ends.append(end)

    def finish(self, end_offset: int) -> CycleIndex:
        """Close the open block against ``end_offset`` and freeze the result."""

        self._close(end_offset)
        self._open_cycle = None
        if self.out_of_order:
            logger.warning("skipped %d out-of-order cycle blocks", self.out_of_order)
        return CycleIndex(
            _frozen(self._cycles), _frozen(self._starts), _frozen(self._ends)
        )


@dataclass
class UnitStateLog:
    """Ordered busy/opcode transitions of a single unit."""

    cycles: List[int] = field(default_factory=list)
    events: List[ExecStateEvent] = field(default_factory=list)

    def append(self, event: ExecStateEvent) -> None:
        self.cycles.append(event.cycle)
        self.events.append(event)

    def state_at(self, cycle: int) -> UnitState:
        """Return the state in effect at ``cycle`` (idle before any entry)."""

        pos = bisect_right(self.cycles, cycle) - 1
        if pos < 0:
            return IDLE
        return self.events[pos].state

    def __len__(self) -> int:
        return len(self.events)


class StateDeltaTracker:
    """Run-length compress exec-state reports into per-unit transition logs.

    Successive reports with the same ``(busy, opcode)`` for a unit are
    collapsed; only changes are recorded.
    """

    def __init__(self) -> None:
        self._last: Dict[UnitKey, UnitState] = {}
        self.logs: Dict[UnitKey, UnitStateLog] = {}

    def feed(self, event: ExecStateEvent) -> bool:
        """Record ``event`` if it changes its unit's state; return whether it did."""

        key = event.unit
        state = event.state
        if self._last.get(key) == state:
            return False
        self._last[key] = state
        self.logs.setdefault(key, UnitStateLog()).append(event)
        return True

    def finish(self) -> Mapping[UnitKey, UnitStateLog]:
        self._last.clear()
        return MappingProxyType(self.logs)


@dataclass(frozen=True, eq=False)
class TraceIndex:
    """Immutable product of a full indexing pass."""

    dim_x: int
    dim_y: int
    cycle_index: CycleIndex
    unit_logs: Mapping[UnitKey, UnitStateLog]
    min_cycle: int
    max_cycle: int
    total_events: int
    source: TraceSource
    stats: ScanStats = field(default_factory=ScanStats, compare=False)

    @property
    def empty(self) -> bool:
        return len(self.cycle_index) == 0

    def state_at(self, unit: UnitKey, cycle: int) -> UnitState:
        log = self.unit_logs.get(unit)
        return log.state_at(cycle) if log is not None else IDLE

    def snapshot_at(self, cycle: int) -> Dict[UnitKey, UnitState]:
        """Reconstruct every logged unit's state at ``cycle``."""

        return {unit: log.state_at(cycle) for unit, log in self.unit_logs.items()}

    def summary(self) -> dict[str, int]:
        return {
            "dim_x": self.dim_x,
            "dim_y": self.dim_y,
            "min_cycle": self.min_cycle,
            "max_cycle": self.max_cycle,
            "cycles": len(self.cycle_index),
            "events": self.total_events,
            "exec_states": self.stats.exec_states,
            "units": len(self.unit_logs),
            "transitions": sum(len(log) for log in self.unit_logs.values()),
            "skipped_lines": self.stats.skipped,
        }


def build_index(source: object) -> TraceIndex:
    """Scan ``source`` once and return its :class:`TraceIndex`.

    ``source`` may be a path, raw bytes or a :class:`TraceSource`. I/O errors
    propagate to the caller; malformed lines never do.
    """

    src = open_source(source)
    scanner = LogScanner()
    blocks = CycleIndexBuilder()
    deltas = StateDeltaTracker()
    with src.open_stream() as stream:
        for line in scanner.scan(stream):
            blocks.feed(line)
            if line.kind is LineKind.EXEC_STATE:
                deltas.feed(line.event)
    cycle_index = blocks.finish(scanner.end_offset)
    dim_x, dim_y = scanner.dims or (0, 0)
    if len(cycle_index):
        min_cycle = cycle_index.cycle_at(0)
        max_cycle = cycle_index.cycle_at(len(cycle_index) - 1)
    else:
        min_cycle = max_cycle = 0
    index = TraceIndex(
        dim_x=dim_x,
        dim_y=dim_y,
        cycle_index=cycle_index,
        unit_logs=deltas.finish(),
        min_cycle=min_cycle,
        max_cycle=max_cycle,
        total_events=scanner.stats.landings,
        source=src,
        stats=scanner.stats,
    )
    logger.info(
        "indexed %s: %dx%d grid, %d cycles (%d..%d), %d events",
        src.name,
        dim_x,
        dim_y,
        len(cycle_index),
        min_cycle,
        max_cycle,
        index.total_events,
    )
    return index
