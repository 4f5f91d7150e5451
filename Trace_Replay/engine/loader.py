"""Random-access loading of indexed cycle ranges."""

from __future__ import annotations

from typing import Dict

from .index import TraceIndex
from .models import CacheEntry, ExecStateEvent, LandingEvent, UnitKey, UnitState
from .scanner import classify_line


def parse_block(text: str) -> Dict[int, CacheEntry]:
    """Parse decoded trace text into per-cycle events.

    Exec-state suppression starts from an empty history, so the result
    depends only on ``text``.
    """

    result: Dict[int, CacheEntry] = {}
    previous: Dict[UnitKey, UnitState] = {}
    for line in text.split("\n"):
        line = line.rstrip("\r")
        _kind, event = classify_line(line)
        if event is None:
            continue
        entry = result.get(event.cycle)
        if entry is None:
            entry = result[event.cycle] = CacheEntry(event.cycle)
        if isinstance(event, LandingEvent):
            entry.landings.append(event)
        elif isinstance(event, ExecStateEvent):
            state = event.state
            if previous.get(event.unit) == state:
                continue
            previous[event.unit] = state
            entry.exec_changes.append(event)
    return result


def load_cycle_range(
    index: TraceIndex, from_idx: int, to_idx: int
) -> Dict[int, CacheEntry]:
    """Load cycles at index positions ``from_idx..to_idx`` inclusive.

    Exactly the bytes covered by those blocks are read from the source and
    reparsed. Invalid or empty ranges yield ``{}``; I/O errors propagate.
    """

    blocks = index.cycle_index
    if from_idx < 0 or to_idx >= len(blocks) or from_idx > to_idx:
        return {}
    start = int(blocks.starts[from_idx])
    end = int(blocks.ends[to_idx])
    raw = index.source.read_range(start, end)
    return parse_block(raw.decode("utf-8", errors="replace"))
