"""Trace indexing, random-access loading and timed replay."""

from .cache import ReadAheadCache
from .errors import PrefetchFailed, TraceSourceError
from .index import (
    CycleIndex,
    CycleIndexBuilder,
    StateDeltaTracker,
    TraceIndex,
    build_index,
    find_cycle_index,
    find_cycle_index_ge,
    find_cycle_index_le,
)
from .loader import load_cycle_range, parse_block
from .models import (
    CacheEntry,
    CycleIndexEntry,
    ExecStateEvent,
    LandingEvent,
    PlaybackState,
    PlaybackStatus,
    UnitState,
    source_coords,
    to_grid_coords,
)
from .packets import (
    DirectPacket,
    MultiHopPacket,
    make_packet,
    packet_position,
    route_xy,
)
from .scanner import LogScanner
from .scheduler import NullListener, PlaybackScheduler, ReplayListener
from .source import BytesSource, FileSource, TraceSource, open_source

__all__ = [
    "BytesSource",
    "CacheEntry",
    "CycleIndex",
    "CycleIndexBuilder",
    "CycleIndexEntry",
    "DirectPacket",
    "ExecStateEvent",
    "FileSource",
    "LandingEvent",
    "LogScanner",
    "MultiHopPacket",
    "NullListener",
    "PlaybackScheduler",
    "PlaybackState",
    "PlaybackStatus",
    "PrefetchFailed",
    "ReadAheadCache",
    "ReplayListener",
    "StateDeltaTracker",
    "TraceIndex",
    "TraceSource",
    "TraceSourceError",
    "UnitState",
    "build_index",
    "find_cycle_index",
    "find_cycle_index_ge",
    "find_cycle_index_le",
    "load_cycle_range",
    "make_packet",
    "open_source",
    "packet_position",
    "parse_block",
    "route_xy",
    "source_coords",
    "to_grid_coords",
]
