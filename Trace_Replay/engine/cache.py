"""Bounded read-ahead cache of parsed cycles.

The cache is filled by :func:`~Trace_Replay.engine.loader.load_cycle_range`
calls running on an executor. Workers never touch cache state: finished jobs
are pushed onto a thread-safe queue and merged by :meth:`ReadAheadCache.poll`
on the thread that drives playback. Each job captures the generation counter
at submission and is merged only if the counter is unchanged, so seeking or
cancelling invalidates outstanding work without locks or blocking.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Executor, Future
from dataclasses import dataclass
from queue import Empty, SimpleQueue
from typing import Callable, Dict, List, Optional

import numpy as np

from telemetry import PlaybackTelemetry

from ..config import Config
from .errors import PrefetchFailed
from .index import TraceIndex
from .loader import load_cycle_range
from .logging import log_entry
from .logging_models import DiscardLog, PrefetchLog, PrefetchPayload
from .models import CacheEntry

logger = logging.getLogger(__name__)

Loader = Callable[[TraceIndex, int, int], Dict[int, CacheEntry]]


@dataclass
class _Job:
    kind: str
    generation: int
    from_idx: int
    to_idx: int
    submitted: float
    future: Future


class ReadAheadCache:
    """Forward-biased ``cycle -> CacheEntry`` cache with a single prefetch slot.

    Parameters
    ----------
    executor:
        Executor running the range loads.
    loader:
        Range loader, :func:`load_cycle_range` unless overridden.
    batch, max_bytes, margin, trail:
        Prefetch sizing and eviction windows; default to the matching
        :class:`~Trace_Replay.config.Config` values.
    clock:
        Monotonic time source used for latency telemetry.
    """

    def __init__(
        self,
        executor: Executor,
        *,
        loader: Loader = load_cycle_range,
        batch: int | None = None,
        max_bytes: int | None = None,
        margin: int | None = None,
        trail: int | None = None,
        clock: Callable[[], float] = time.monotonic,
        telemetry: PlaybackTelemetry | None = None,
    ) -> None:
        self._executor = executor
        self._loader = loader
        self.batch = max(1, int(batch if batch is not None else Config.prefetch_batch))
        self.max_bytes = int(
            max_bytes if max_bytes is not None else Config.prefetch_max_bytes
        )
        self.margin = int(margin if margin is not None else Config.lookahead_margin)
        self.trail = int(trail if trail is not None else Config.cache_trail_cycles)
        self._clock = clock
        self.telemetry = telemetry or PlaybackTelemetry()

        self.generation = 0
        self._index: Optional[TraceIndex] = None
        self._entries: Dict[int, CacheEntry] = {}
        self._inflight: Optional[_Job] = None
        self._completed: SimpleQueue[_Job] = SimpleQueue()
        self._window_end: Optional[int] = None
        self.last_error: Optional[PrefetchFailed] = None

    # ------------------------------------------------------------------
    @property
    def index(self) -> Optional[TraceIndex]:
        return self._index

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None

    @property
    def window_end(self) -> Optional[int]:
        """Index position one past the last merged prefetch."""
        return self._window_end

    def __contains__(self, cycle: int) -> bool:
        return cycle in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def cycles(self) -> List[int]:
        return sorted(self._entries)

    # ------------------------------------------------------------------
    def reset(self, index: Optional[TraceIndex]) -> None:
        """Attach ``index`` and drop everything tied to the previous one."""

        self.invalidate()
        self._index = index

    def invalidate(self) -> None:
        """Bump the generation and clear cached entries.

        The prefetch slot is released; a read still running finishes in the
        background and its result is discarded on arrival.
        """

        self.generation += 1
        self._entries.clear()
        self._inflight = None
        self._window_end = None

    # ------------------------------------------------------------------
    def _span(self, from_idx: int) -> int:
        """Return the last index position a prefetch from ``from_idx`` covers."""

        blocks = self._index.cycle_index
        to_idx = min(from_idx + self.batch, len(blocks)) - 1
        limit = int(blocks.starts[from_idx]) + self.max_bytes
        by_bytes = int(np.searchsorted(blocks.ends, limit, side="right")) - 1
        return max(from_idx, min(to_idx, by_bytes))

    def _submit(self, kind: str, from_idx: int, to_idx: int) -> _Job:
        future = self._executor.submit(self._loader, self._index, from_idx, to_idx)
        job = _Job(kind, self.generation, from_idx, to_idx, self._clock(), future)
        future.add_done_callback(lambda _f, job=job: self._completed.put(job))
        return job

    def request(self, from_idx: int) -> bool:
        """Prefetch a window starting at index position ``from_idx``.

        Returns ``False`` when coalesced with an outstanding prefetch or when
        there is nothing to load.
        """

        if self._index is None or self._inflight is not None:
            return False
        if from_idx < 0 or from_idx >= len(self._index.cycle_index):
            return False
        to_idx = self._span(from_idx)
        self.telemetry.prefetches += 1
        self._inflight = self._submit("prefetch", from_idx, to_idx)
        return True

    def request_exact(self, pos: int) -> bool:
        """Load the single block at ``pos`` outside the prefetch slot."""

        if self._index is None or pos < 0 or pos >= len(self._index.cycle_index):
            return False
        self._submit("exact", pos, pos)
        return True

    def maybe_refill(self, next_pos: int) -> bool:
        """Issue a prefetch if ``next_pos`` is close to the end of the window."""

        if self._index is None or next_pos >= len(self._index.cycle_index):
            return False
        if self._window_end is None or next_pos >= self._window_end:
            return self.request(next_pos)
        if self._window_end - next_pos <= self.margin:
            return self.request(self._window_end)
        return False

    # ------------------------------------------------------------------
    def poll(self) -> List[CacheEntry]:
        """Merge finished jobs; return entries of current exact loads.

        Prefetch results are merged into the cache. Results from an older
        generation are dropped. A prefetch that failed with an I/O error
        frees the slot so the next miss retries it.
        """

        exact: List[CacheEntry] = []
        while True:
            try:
                job = self._completed.get_nowait()
            except Empty:
                break
            if job is self._inflight:
                self._inflight = None
            if job.generation != self.generation or job.future.cancelled():
                self._discard(job)
                continue
            exc = job.future.exception()
            if exc is not None:
                if not isinstance(exc, OSError):
                    raise exc
                self._fail(job, exc)
                continue
            result = job.future.result()
            if job.kind == "exact":
                exact.extend(result[c] for c in sorted(result))
                continue
            self._merge(job, result)
        return exact

    def _payload(self, job: _Job, entries: int = 0, **extra) -> PrefetchPayload:
        payload = PrefetchPayload(
            from_idx=job.from_idx, to_idx=job.to_idx, entries=entries, **extra
        )
        blocks = self._index.cycle_index
        payload.first_cycle = blocks.cycle_at(job.from_idx)
        payload.last_cycle = blocks.cycle_at(job.to_idx)
        return payload

    def _merge(self, job: _Job, result: Dict[int, CacheEntry]) -> None:
        self._entries.update(result)
        end = job.to_idx + 1
        if self._window_end is None or end > self._window_end:
            self._window_end = end
        latency = self._clock() - job.submitted
        self.telemetry.record_merge(latency)
        payload = self._payload(job, len(result), latency=latency)
        log_entry(
            "session",
            "prefetch",
            PrefetchLog(
                cycle=payload.first_cycle, generation=job.generation, payload=payload
            ),
        )

    def _discard(self, job: _Job) -> None:
        # Positions refer to whatever index was attached at submission time,
        # so they are not resolved to cycles here.
        self.telemetry.discarded += 1
        logger.debug(
            "discarding %s load %d..%d from generation %d (now %d)",
            job.kind,
            job.from_idx,
            job.to_idx,
            job.generation,
            self.generation,
        )
        log_entry(
            "session",
            "discard",
            DiscardLog(
                generation=job.generation,
                payload=PrefetchPayload(
                    from_idx=job.from_idx, to_idx=job.to_idx, entries=0
                ),
            ),
        )

    def _fail(self, job: _Job, exc: BaseException) -> None:
        self.telemetry.failed += 1
        payload = self._payload(job, error=str(exc))
        self.last_error = PrefetchFailed(payload.first_cycle, payload.last_cycle, exc)
        logger.warning("%s; will retry", self.last_error)

    # ------------------------------------------------------------------
    def get(self, cycle: int) -> Optional[CacheEntry]:
        return self._entries.get(cycle)

    def take(self, cycle: int) -> Optional[CacheEntry]:
        """Remove and return the entry for ``cycle``."""
        return self._entries.pop(cycle, None)

    def evict_behind(self, cycle: int) -> int:
        """Drop entries more than ``trail`` cycles behind ``cycle``."""

        horizon = cycle - self.trail
        stale = [c for c in self._entries if c < horizon]
        for c in stale:
            del self._entries[c]
        return len(stale)
