"""Line classifier for simulator trace logs.

Every relevant line starts with ``@<cycle> ``. Three kinds of lines matter:

* the grid declaration ``@0 dimX=<N>, dimY=<M>`` (first occurrence only),
* packet landings ``@5 P1.0 (x) landing C3 from link W, ...``,
* execution-state reports ``@5 P0.0:... [EX OP] T0 FADDS ...``.

Anything else, including marker lines whose fields fail to parse, is skipped.
Cheap substring checks gate the regular expressions so the bulk of a large
trace is rejected without running a pattern.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO, Iterator, Optional, Tuple, Union

from .models import ExecStateEvent, LandingEvent

LANDING_MARKER = ") landing C"
EXEC_MARKER = "[EX OP]"
IDLE_MARKER = "[EX OP] IDLE"

_DIM_RE = re.compile(r"^@\d+ dimX=(\d+), dimY=(\d+)")
_LANDING_RE = re.compile(
    r"^@(\d+) P(\d+)\.(\d+) \(\w+\) landing C(\d+) from link ([WESNR]),"
)
_EXEC_RE = re.compile(r"^@(\d+) P(\d+)\.(\d+):.*\[EX OP\]")
_OPCODE_RE = re.compile(r"T\d+(?:\.\w+)?\s+(\S+)")
_CYCLE_RE = re.compile(r"^@(\d+) ")


class LineKind(Enum):
    """Classification assigned to each scanned line."""

    DIMENSIONS = "dimensions"
    LANDING = "landing"
    EXEC_STATE = "exec_state"
    IRRELEVANT = "irrelevant"


Event = Union[LandingEvent, ExecStateEvent]


@dataclass(frozen=True)
class ScannedLine:
    """Result of classifying one line of a byte stream.

    ``cycle`` is the leading ``@<cycle>`` of the line, present even for lines
    that carry no event, so index builders can track cycle blocks.
    """

    start: int
    end: int
    cycle: Optional[int]
    kind: LineKind
    event: Optional[Event] = None
    dims: Optional[Tuple[int, int]] = None


@dataclass
class ScanStats:
    """Counters collected while scanning."""

    lines: int = 0
    landings: int = 0
    exec_states: int = 0
    skipped: int = 0

    @property
    def events(self) -> int:
        return self.landings + self.exec_states


def leading_cycle(line: str) -> Optional[int]:
    """Return the ``@<cycle>`` a line starts with, if any."""

    if not line.startswith("@"):
        return None
    m = _CYCLE_RE.match(line)
    return int(m.group(1)) if m else None


def parse_dimensions(line: str) -> Optional[Tuple[int, int]]:
    m = _DIM_RE.match(line)
    if m is None:
        return None
    return int(m.group(1)), int(m.group(2))


def parse_landing(line: str) -> Optional[LandingEvent]:
    m = _LANDING_RE.match(line)
    if m is None:
        return None
    cycle, x, y, color, link = m.groups()
    return LandingEvent(int(cycle), int(x), int(y), int(color), link)


def parse_exec_state(line: str) -> Optional[ExecStateEvent]:
    """Parse an ``[EX OP]`` line.

    The unit is busy unless the marker is immediately followed by ``IDLE``;
    the opcode is the first ``T<n>[.<suffix>] <OPCODE>`` token after the marker.
    """

    m = _EXEC_RE.match(line)
    if m is None:
        return None
    cycle, x, y = (int(g) for g in m.groups())
    busy = IDLE_MARKER not in line
    opcode = None
    if busy:
        tail = line.split(EXEC_MARKER, 1)[1]
        op = _OPCODE_RE.search(tail)
        if op is not None:
            opcode = op.group(1)
    return ExecStateEvent(cycle, x, y, busy, opcode)


def classify_line(line: str) -> Tuple[LineKind, Optional[Event]]:
    """Classify a single decoded line (dimension lines are not considered)."""

    if LANDING_MARKER in line:
        event = parse_landing(line)
        if event is not None:
            return LineKind.LANDING, event
    elif EXEC_MARKER in line:
        event = parse_exec_state(line)
        if event is not None:
            return LineKind.EXEC_STATE, event
    return LineKind.IRRELEVANT, None


def decode_line(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace").rstrip("\r\n")


class LogScanner:
    """Single forward pass over a trace byte stream.

    The scanner yields one :class:`ScannedLine` per input line with exact byte
    offsets. Dimension declarations are looked for only until the first one
    is found.
    """

    def __init__(self) -> None:
        self.dims: Optional[Tuple[int, int]] = None
        self.stats = ScanStats()
        self.end_offset = 0

    def scan(self, stream: BinaryIO) -> Iterator[ScannedLine]:
        offset = 0
        for raw in stream:
            start = offset
            offset += len(raw)
            yield self._scan_line(decode_line(raw), start, offset)
        self.end_offset = offset

    def _scan_line(self, line: str, start: int, end: int) -> ScannedLine:
        self.stats.lines += 1
        cycle = leading_cycle(line)
        if self.dims is None:
            dims = parse_dimensions(line)
            if dims is not None:
                self.dims = dims
                return ScannedLine(start, end, cycle, LineKind.DIMENSIONS, dims=dims)
        kind, event = classify_line(line)
        if kind is LineKind.LANDING:
            self.stats.landings += 1
        elif kind is LineKind.EXEC_STATE:
            self.stats.exec_states += 1
        elif LANDING_MARKER in line or EXEC_MARKER in line:
            self.stats.skipped += 1
        return ScannedLine(start, end, cycle, kind, event)
