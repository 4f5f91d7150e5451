"""Playback scheduler driving a loaded trace against a renderer.

A :class:`PlaybackScheduler` is one replay session. It owns the
:class:`~Trace_Replay.engine.index.TraceIndex`, the read-ahead cache with its
generation counter, the logical clock and the in-flight packets. The host
calls :meth:`PlaybackScheduler.tick` from a single periodic callback; every
state mutation happens on that thread and only range loads and indexing run
on the executor.

States::

    IDLE --load--> PAUSED <--play/pause--> PLAYING --max cycle--> DONE
      ^                                                            |
      +--------------------------cancel----------------------------+
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from telemetry import PlaybackTelemetry

from ..config import Config
from .cache import ReadAheadCache
from .index import TraceIndex, build_index, find_cycle_index, find_cycle_index_ge
from .logging import MetricAggregator, log_entry, metrics_aggregator
from .logging_models import (
    LoadLog,
    LoadPayload,
    SeekLog,
    SeekPayload,
    StallLog,
    StallPayload,
)
from .models import (
    IDLE,
    CacheEntry,
    ExecStateEvent,
    LandingEvent,
    PlaybackState,
    PlaybackStatus,
    UnitKey,
    UnitState,
    to_grid_coords,
)
from .packets import (
    Packet,
    PacketPosition,
    freeze,
    is_complete,
    make_packet,
    packet_position,
    resume,
)

logger = logging.getLogger(__name__)


class ReplayListener(Protocol):
    """Renderer-side consumer of applied events."""

    def landings_applied(self, cycle: int, landings: Sequence[LandingEvent]) -> None:
        """Packets landed during ``cycle``."""

    def unit_states_changed(
        self, cycle: int, changes: Sequence[ExecStateEvent]
    ) -> None:
        """Units changed busy/opcode state at ``cycle``."""


class NullListener:
    """Listener that ignores every notification."""

    def landings_applied(self, cycle: int, landings: Sequence[LandingEvent]) -> None:
        return None

    def unit_states_changed(
        self, cycle: int, changes: Sequence[ExecStateEvent]
    ) -> None:
        return None


class PlaybackScheduler:
    """Replay session converting wall-clock ticks into logical cycles.

    Parameters
    ----------
    listener:
        Receives landing and unit-state notifications for every applied
        cycle.
    executor:
        Executor for indexing and range loads. A one-worker thread pool owned
        by the session is created when omitted.
    clock:
        Monotonic time source used when ``now`` is not passed explicitly.
    cache:
        Optional pre-configured :class:`ReadAheadCache` bound to ``executor``.
    """

    def __init__(
        self,
        listener: ReplayListener | None = None,
        *,
        executor: Executor | None = None,
        clock: Callable[[], float] = time.monotonic,
        cache: ReadAheadCache | None = None,
    ) -> None:
        self.listener: ReplayListener = listener or NullListener()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="trace-prefetch"
        )
        self._clock = clock
        self.telemetry = PlaybackTelemetry()
        if cache is None:
            cache = ReadAheadCache(
                self._executor, clock=clock, telemetry=self.telemetry
            )
        self.cache = cache
        self.cache.telemetry = self.telemetry
        self.max_cycles_per_tick = int(Config.max_cycles_per_tick)
        self.base_speed = float(Config.base_cycles_per_second)
        self._timing = Config.packet_timing()

        self.index: Optional[TraceIndex] = None
        self.state = PlaybackState(speed=self.base_speed)
        self.unit_states: Dict[UnitKey, UnitState] = {}
        self.packets: List[Packet] = []
        self._pending_load: Optional[tuple[int, Future]] = None
        self._metrics: Optional[MetricAggregator] = None

    # ------------------------------------------------------------------
    @property
    def status(self) -> PlaybackStatus:
        return self.state.status

    @property
    def current_cycle(self) -> int:
        return self.state.current_cycle

    @property
    def generation(self) -> int:
        return self.cache.generation

    @property
    def active_units(self) -> int:
        """Number of units busy with something other than ``NOP``."""
        return sum(1 for s in self.unit_states.values() if s.active)

    def _now(self, now: float | None) -> float:
        return self._clock() if now is None else now

    # ------------------------------------------------------------------
    def load(self, source: object) -> TraceIndex:
        """Index ``source`` synchronously and make it the loaded trace.

        An already built :class:`TraceIndex` is adopted as is.
        """

        self.cancel()
        index = source if isinstance(source, TraceIndex) else build_index(source)
        self._adopt(index)
        return index

    def begin_load(self, source: object) -> Future:
        """Index ``source`` on the executor.

        The result is adopted by a later :meth:`poll` or :meth:`tick` unless
        the session was cancelled or reloaded in the meantime. Indexing
        failures stay on the returned future and leave the session idle.
        """

        self.cancel()
        future = self._executor.submit(build_index, source)
        self._pending_load = (self.cache.generation, future)
        return future

    @property
    def loading(self) -> bool:
        return self._pending_load is not None

    def _poll_load(self) -> None:
        if self._pending_load is None:
            return
        generation, future = self._pending_load
        if not future.done():
            return
        self._pending_load = None
        if generation != self.cache.generation or future.cancelled():
            logger.debug("dropping index built for generation %d", generation)
            return
        exc = future.exception()
        if exc is not None:
            logger.error("indexing failed: %s", exc)
            return
        self._adopt(future.result())

    def _adopt(self, index: TraceIndex) -> None:
        self.cache.reset(index)
        self.index = index
        self.state = PlaybackState(
            min_cycle=index.min_cycle,
            max_cycle=index.max_cycle,
            current_cycle=index.min_cycle - 1,
            speed=self.state.speed,
            status=PlaybackStatus.PAUSED,
        )
        self.unit_states = {unit: IDLE for unit in index.unit_logs}
        self.packets.clear()
        self._metrics = metrics_aggregator()
        log_entry(
            "session",
            "load",
            LoadLog(
                cycle=index.min_cycle,
                generation=self.cache.generation,
                payload=LoadPayload(
                    source=index.source.name,
                    dim_x=index.dim_x,
                    dim_y=index.dim_y,
                    min_cycle=index.min_cycle,
                    max_cycle=index.max_cycle,
                    cycles=len(index.cycle_index),
                    events=index.total_events,
                ),
            ),
        )
        self.cache.request(0)

    # ------------------------------------------------------------------
    def play(self, now: float | None = None) -> None:
        """Start or resume playback; a finished trace is rewound first."""

        if self.index is None:
            return
        if self.state.status is PlaybackStatus.PLAYING:
            return
        if self.state.status is PlaybackStatus.DONE:
            self.seek(self.state.min_cycle - 1)
        now = self._now(now)
        self._anchor(now)
        self.state.status = PlaybackStatus.PLAYING
        for packet in self.packets:
            resume(packet, now)
        self.cache.maybe_refill(self._next_pos())

    def pause(self, now: float | None = None) -> None:
        """Freeze playback; the cache is left untouched."""

        if self.state.status is not PlaybackStatus.PLAYING:
            return
        now = self._now(now)
        self.state.status = PlaybackStatus.PAUSED
        self.state.anchor = None
        for packet in self.packets:
            freeze(packet, now)

    def set_speed(self, multiplier: float, now: float | None = None) -> None:
        """Set playback speed to ``multiplier`` times the base cycle rate."""

        if multiplier <= 0:
            raise ValueError(f"speed multiplier must be positive, got {multiplier}")
        if self.index is None:
            return
        self.state.speed = self.base_speed * float(multiplier)
        if self.state.status is PlaybackStatus.PLAYING:
            self._anchor(self._now(now))

    def cancel(self) -> None:
        """Discard the loaded trace and any outstanding work; back to idle."""

        self.cache.reset(None)
        self.index = None
        self.state = PlaybackState(speed=self.state.speed)
        self.unit_states = {}
        self.packets.clear()
        self._pending_load = None
        self._metrics = None

    unload = cancel

    def close(self) -> None:
        """Cancel the session and shut down an executor it created."""

        self.cancel()
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "PlaybackScheduler":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    def _anchor(self, now: float) -> None:
        self.state.anchor = now
        self.state.anchor_cycles = 0

    def _next_pos(self) -> int:
        return find_cycle_index_ge(self.index.cycle_index, self.state.current_cycle + 1)

    def seek(self, target: int, now: float | None = None) -> int:
        """Jump to ``target`` and rebuild every unit's state there.

        ``target`` is clamped to ``[min_cycle - 1, max_cycle]``. Returns the
        cycle actually reached.
        """

        if self.index is None:
            return self.state.current_cycle
        requested = target
        target = max(self.state.min_cycle - 1, min(int(target), self.state.max_cycle))
        if target != requested:
            logger.debug("seek to %d clamped to %d", requested, target)

        self.cache.invalidate()
        self.packets.clear()
        snapshot = self.index.snapshot_at(target)
        self.unit_states = snapshot
        self.state.current_cycle = target
        if self.state.status is PlaybackStatus.PLAYING:
            self._anchor(self._now(now))
        if target >= self.state.max_cycle:
            self.state.status = PlaybackStatus.DONE
            self.state.anchor = None
        elif self.state.status is PlaybackStatus.DONE:
            self.state.status = PlaybackStatus.PAUSED

        self.listener.unit_states_changed(
            target,
            [
                ExecStateEvent(target, x, y, state.busy, state.opcode)
                for (x, y), state in sorted(snapshot.items())
            ],
        )
        log_entry(
            "session",
            "seek",
            SeekLog(
                cycle=target,
                generation=self.cache.generation,
                payload=SeekPayload(
                    requested=int(requested),
                    target=target,
                    clamped=target != requested,
                    units=len(snapshot),
                ),
            ),
        )

        blocks = self.index.cycle_index
        exact = find_cycle_index(blocks, target)
        if exact >= 0:
            self.cache.request_exact(exact)
        self.cache.request(find_cycle_index_ge(blocks, target + 1))
        return target

    # ------------------------------------------------------------------
    def poll(self, now: float | None = None) -> None:
        """Adopt finished background work without advancing playback."""

        self._poll_load()
        if self.index is None:
            return
        now = self._now(now)
        for entry in self.cache.poll():
            self._show_seek_cycle(entry, now)

    def tick(self, now: float | None = None) -> int:
        """Advance playback to wall-clock time ``now``.

        Returns the number of logical cycles advanced. Playback stops at the
        first indexed cycle that is not cached yet; the time for cycles not
        applied stays credited to the next tick.
        """

        now = self._now(now)
        self.poll(now)
        if self.index is None:
            return 0
        self.packets = [p for p in self.packets if not is_complete(p, now)]
        state = self.state
        if state.status is not PlaybackStatus.PLAYING:
            return 0

        due = int((now - state.anchor) * state.speed) - state.anchor_cycles
        if due <= 0:
            return 0
        capped = due > self.max_cycles_per_tick
        if capped:
            due = self.max_cycles_per_tick
        target = min(state.current_cycle + due, state.max_cycle)

        blocks = self.index.cycle_index
        pos = find_cycle_index_ge(blocks, state.current_cycle + 1)
        reached = target
        stalled = False
        while pos < len(blocks):
            cycle = blocks.cycle_at(pos)
            if cycle > target:
                break
            entry = self.cache.take(cycle)
            if entry is None:
                reached = cycle - 1
                stalled = True
                self._stall(cycle, pos)
                break
            self._apply(entry, now)
            pos += 1

        advanced = reached - state.current_cycle
        state.current_cycle = reached
        if capped and not stalled:
            self._anchor(now)
        else:
            state.anchor_cycles += advanced
        if reached >= state.max_cycle:
            state.status = PlaybackStatus.DONE
            state.anchor = None
        self.cache.evict_behind(reached)
        self.cache.maybe_refill(pos)
        self.telemetry.record_tick(advanced, stalled)
        return advanced

    def _stall(self, cycle: int, pos: int) -> None:
        in_flight = self.cache.in_flight
        self.cache.request(pos)
        logger.debug("stalled before cycle %d (in flight: %s)", cycle, in_flight)
        log_entry(
            "session",
            "stall",
            StallLog(
                cycle=cycle,
                generation=self.cache.generation,
                payload=StallPayload(missing_cycle=cycle, prefetch_in_flight=in_flight),
            ),
        )

    # ------------------------------------------------------------------
    def _apply(self, entry: CacheEntry, now: float) -> None:
        for change in entry.exec_changes:
            self.unit_states[change.unit] = change.state
        for landing in entry.landings:
            self.packets.append(self._spawn(landing, now))
        if entry.landings:
            self.listener.landings_applied(entry.cycle, entry.landings)
        if entry.exec_changes:
            self.listener.unit_states_changed(entry.cycle, entry.exec_changes)
        if self._metrics is not None:
            self._metrics.add("landings", len(entry.landings))
            self._metrics.add("exec_changes", len(entry.exec_changes))
            self._metrics.flush(entry.cycle)

    def _show_seek_cycle(self, entry: CacheEntry, now: float) -> None:
        """Display landings of the cycle a seek landed on."""

        if not entry.landings:
            return
        playing = self.state.status is PlaybackStatus.PLAYING
        for landing in entry.landings:
            packet = self._spawn(landing, now)
            if not playing:
                freeze(packet, now)
            self.packets.append(packet)
        self.listener.landings_applied(entry.cycle, entry.landings)

    def _spawn(self, landing: LandingEvent, now: float) -> Packet:
        dim_y = self.index.dim_y
        dst = to_grid_coords(landing.x, landing.y, dim_y)
        source = landing.source
        src = to_grid_coords(source[0], source[1], dim_y) if source else dst
        return make_packet(src, dst, now, self._timing, color=landing.color)

    def packet_positions(self, now: float | None = None) -> List[PacketPosition]:
        """Return positions of every visible packet at ``now``."""

        now = self._now(now)
        positions = (packet_position(p, now) for p in self.packets)
        return [pos for pos in positions if pos is not None]
