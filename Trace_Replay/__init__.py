"""Trace_Replay package initialization."""

from __future__ import annotations

from typing import Any

from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from .engine.index import build_index
    from .engine.scheduler import PlaybackScheduler

__all__ = ["PlaybackScheduler", "build_index"]


def __getattr__(name: str) -> Any:  # pragma: no cover - attribute access
    """Lazily expose the replay session and the indexer."""

    if name == "PlaybackScheduler":
        from .engine.scheduler import PlaybackScheduler as _PlaybackScheduler

        return _PlaybackScheduler
    if name == "build_index":
        from .engine.index import build_index as _build_index

        return _build_index
    raise AttributeError(name)
