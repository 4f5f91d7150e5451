"""Rolling telemetry buffers for replay sessions."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field

import numpy as np


@dataclass
class RollingSeries:
    """Maintain a finite history of numeric samples."""

    maxlen: int
    _data: deque[float] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._data = deque(maxlen=self.maxlen)

    def append(self, value: float) -> None:
        """Append ``value`` keeping only the newest ``maxlen`` samples."""

        self._data.append(value)

    def as_list(self) -> list[float]:
        """Return the stored samples as a list."""

        return list(self._data)

    def mean(self) -> float:
        if not self._data:
            return float("nan")
        return float(np.mean(np.fromiter(self._data, dtype=float)))

    def percentile(self, q: float) -> float:
        """Return the ``q``-th percentile (``0 <= q <= 100``) of the samples."""

        if not self._data:
            return float("nan")
        return float(np.percentile(np.fromiter(self._data, dtype=float), q))

    def bootstrap_ci(
        self,
        confidence: float = 0.95,
        n_boot: int = 1000,
        rng: np.random.Generator | None = None,
    ) -> tuple[float, float, float]:
        """Return mean and bootstrap confidence interval.

        Parameters
        ----------
        confidence:
            Two-sided confidence level. Defaults to ``0.95``.
        n_boot:
            Number of bootstrap resamples.
        rng:
            Optional NumPy random generator for deterministic resampling.

        Returns
        -------
        tuple
            ``(mean, lower, upper)`` of the estimated interval. ``NaN`` values
            are returned when the series is empty.
        """

        data = np.array(self._data, dtype=float)
        if data.size == 0:
            nan = float("nan")
            return nan, nan, nan
        rng = rng or np.random.default_rng()
        samples = rng.choice(data, size=(n_boot, data.size), replace=True)
        means = samples.mean(axis=1)
        alpha = 0.5 * (1.0 - confidence)
        lower = float(np.quantile(means, alpha))
        upper = float(np.quantile(means, 1.0 - alpha))
        return float(data.mean()), lower, upper

    def __len__(self) -> int:  # pragma: no cover - trivial
        """Return the number of stored samples."""

        return len(self._data)


@dataclass
class PlaybackTelemetry:
    """Counters and rolling histories collected while a trace plays.

    Parameters
    ----------
    max_points:
        Maximum number of samples retained per rolling series.
    """

    max_points: int = 600
    ticks: int = 0
    stalls: int = 0
    prefetches: int = 0
    merged: int = 0
    discarded: int = 0
    failed: int = 0
    cycles_per_tick: RollingSeries = field(init=False)
    prefetch_latency: RollingSeries = field(init=False)

    def __post_init__(self) -> None:
        self.cycles_per_tick = RollingSeries(self.max_points)
        self.prefetch_latency = RollingSeries(self.max_points)

    def record_tick(self, advanced: int, stalled: bool) -> None:
        self.ticks += 1
        self.cycles_per_tick.append(float(advanced))
        if stalled:
            self.stalls += 1

    def record_merge(self, latency: float) -> None:
        self.merged += 1
        self.prefetch_latency.append(latency)

    def summary(self) -> dict[str, float]:
        """Return a flat mapping suitable for JSON output."""

        return {
            "ticks": float(self.ticks),
            "stalls": float(self.stalls),
            "prefetches": float(self.prefetches),
            "merged": float(self.merged),
            "discarded": float(self.discarded),
            "failed": float(self.failed),
            "cycles_per_tick_mean": self.cycles_per_tick.mean(),
            "prefetch_latency_p95": self.prefetch_latency.percentile(95),
        }
