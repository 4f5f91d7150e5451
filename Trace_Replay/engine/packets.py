"""In-flight packet visuals.

Packets are a tagged variant: a :class:`DirectPacket` hops between two
neighbouring units, a :class:`MultiHopPacket` follows a routed path one hop at
a time. :func:`packet_position` is the single dispatch point renderers call;
positions are in grid ``(row, col)`` units so renderers only scale them.

A packet whose ``start`` is ``None`` is frozen and keeps the progress stored
in ``elapsed`` until :func:`resume` gives it fresh timing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

GridPos = Tuple[float, float]


@dataclass
class DirectPacket:
    """Packet moving straight from ``src`` to ``dst``."""

    src: GridPos
    dst: GridPos
    start: Optional[float]
    duration: float = 0.6
    fade_in: float = 0.15
    fade_out: float = 0.15
    color: int = 0
    elapsed: float = 0.0


@dataclass
class MultiHopPacket:
    """Packet travelling along ``path``, spending ``hop_delay`` per hop."""

    path: List[GridPos]
    start: Optional[float]
    hop_delay: float = 0.3
    fade_in: float = 0.1
    fade_out: float = 0.1
    color: int = 0
    elapsed: float = 0.0

    @property
    def hops(self) -> int:
        return max(len(self.path) - 1, 0)

    @property
    def duration(self) -> float:
        return self.hops * self.hop_delay + self.fade_in + self.fade_out


Packet = Union[DirectPacket, MultiHopPacket]


@dataclass
class PacketPosition:
    row: float
    col: float
    alpha: float = field(default=1.0)


def route_xy(src: Tuple[int, int], dst: Tuple[int, int]) -> List[GridPos]:
    """Return the column-first Manhattan route from ``src`` to ``dst``.

    The result includes both endpoints.
    """

    row, col = src
    path: List[GridPos] = [(row, col)]
    step = 1 if dst[1] > col else -1
    while col != dst[1]:
        col += step
        path.append((row, col))
    step = 1 if dst[0] > row else -1
    while row != dst[0]:
        row += step
        path.append((row, col))
    return path


def make_packet(
    src: Tuple[int, int],
    dst: Tuple[int, int],
    start: Optional[float],
    timing: Dict[str, float],
    color: int = 0,
) -> Packet:
    """Build the packet for a landing travelling from ``src`` to ``dst``.

    Neighbouring or identical units get a :class:`DirectPacket`; anything
    further away follows :func:`route_xy` hop by hop.
    """

    if abs(src[0] - dst[0]) + abs(src[1] - dst[1]) <= 1:
        return DirectPacket(
            src=src,
            dst=dst,
            start=start,
            duration=timing["duration"],
            fade_in=timing["fade_in"],
            fade_out=timing["fade_out"],
            color=color,
        )
    return MultiHopPacket(
        path=route_xy(src, dst),
        start=start,
        hop_delay=timing["hop_delay"],
        fade_in=timing["fade_in"],
        fade_out=timing["fade_out"],
        color=color,
    )


def _elapsed(packet: Packet, now: float) -> float:
    if packet.start is None:
        return packet.elapsed
    return now - packet.start


def _lerp(a: GridPos, b: GridPos, t: float) -> Tuple[float, float]:
    return a[0] + (b[0] - a[0]) * t, a[1] + (b[1] - a[1]) * t


def _clamp(alpha: float) -> float:
    return max(0.0, min(1.0, alpha))


def is_complete(packet: Packet, now: float) -> bool:
    return _elapsed(packet, now) >= packet.duration


def packet_position(packet: Packet, now: float) -> Optional[PacketPosition]:
    """Return where ``packet`` is drawn at ``now`` or ``None`` once finished."""

    elapsed = _elapsed(packet, now)
    if elapsed >= packet.duration:
        return None
    elapsed = max(elapsed, 0.0)
    match packet:
        case DirectPacket():
            fade_out_start = packet.duration - packet.fade_out
            if elapsed < packet.fade_in:
                return PacketPosition(*packet.src, _clamp(elapsed / packet.fade_in))
            if elapsed < fade_out_start:
                span = fade_out_start - packet.fade_in
                t = (elapsed - packet.fade_in) / span if span > 0 else 1.0
                return PacketPosition(*_lerp(packet.src, packet.dst, t))
            alpha = 1.0 - (elapsed - fade_out_start) / packet.fade_out
            return PacketPosition(*packet.dst, _clamp(alpha))
        case MultiHopPacket():
            origin, dest = packet.path[0], packet.path[-1]
            if elapsed < packet.fade_in:
                return PacketPosition(*origin, _clamp(elapsed / packet.fade_in))
            moving = elapsed - packet.fade_in
            hop = packet.hops
            if packet.hop_delay > 0:
                hop = int(moving // packet.hop_delay)
            if hop < packet.hops:
                t = (moving % packet.hop_delay) / packet.hop_delay
                return PacketPosition(*_lerp(packet.path[hop], packet.path[hop + 1], t))
            fade_out_start = packet.duration - packet.fade_out
            alpha = 1.0 - (elapsed - fade_out_start) / packet.fade_out
            return PacketPosition(*dest, _clamp(alpha))
    raise TypeError(f"unknown packet type: {type(packet).__name__}")


def freeze(packet: Packet, now: float) -> None:
    """Stop ``packet`` in place, remembering how far it got."""

    if packet.start is not None:
        packet.elapsed = now - packet.start
        packet.start = None


def resume(packet: Packet, now: float) -> None:
    """Restart a frozen ``packet`` from its remembered progress."""

    if packet.start is None:
        packet.start = now - packet.elapsed
