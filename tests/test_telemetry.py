import math

import numpy as np
import pytest

from telemetry import PlaybackTelemetry, RollingSeries


def test_series_caps_length():
    series = RollingSeries(maxlen=3)
    for i in range(5):
        series.append(float(i))
    assert series.as_list() == [2.0, 3.0, 4.0]
    assert series.mean() == 3.0
    assert series.percentile(50) == 3.0


def test_empty_series_is_nan():
    series = RollingSeries(maxlen=3)
    assert math.isnan(series.mean())
    assert all(math.isnan(v) for v in series.bootstrap_ci())


def test_bootstrap_confidence_interval():
    series = RollingSeries(maxlen=5)
    for i in range(5):
        series.append(float(i))
    mean, lower, upper = series.bootstrap_ci(n_boot=1000, rng=np.random.default_rng(0))
    assert pytest.approx(mean) == 2.0
    assert lower <= mean <= upper


def test_playback_telemetry_summary():
    telemetry = PlaybackTelemetry(max_points=4)
    telemetry.record_tick(3, stalled=False)
    telemetry.record_tick(1, stalled=True)
    telemetry.record_merge(0.5)
    summary = telemetry.summary()
    assert summary["ticks"] == 2.0
    assert summary["stalls"] == 1.0
    assert summary["merged"] == 1.0
    assert summary["cycles_per_tick_mean"] == 2.0
    assert summary["prefetch_latency_p95"] == 0.5
