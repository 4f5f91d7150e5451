import io
import json
import sys

import pytest

from Trace_Replay.config import Config
from Trace_Replay.main import MainService, main


@pytest.fixture(autouse=True)
def _keep_excepthook(monkeypatch):
    monkeypatch.setattr(sys, "excepthook", sys.excepthook)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


def _run(argv, **kwargs):
    out = io.StringIO()
    code = MainService(argv=argv, out=out, **kwargs).run()
    return code, [json.loads(line) for line in out.getvalue().splitlines()]


def test_summary(sample_file):
    code, (summary,) = _run([str(sample_file), "--summary"])
    assert code == 0
    assert summary["cycles"] == 5
    assert summary["events"] == 3
    assert (summary["min_cycle"], summary["max_cycle"]) == (1, 7)


def test_dump_cycle(sample_file):
    code, (cycle,) = _run([str(sample_file), "--dump-cycle", "2"])
    assert code == 0
    (landing,) = cycle["landings"]
    assert landing == {"x": 1, "y": 0, "color": 3, "link": "W", "source": [0, 0]}
    assert cycle["exec_changes"] == []


def test_dump_missing_cycle_is_empty(sample_file):
    _code, (cycle,) = _run([str(sample_file), "--dump-cycle", "3"])
    assert cycle == {"cycle": 3, "landings": [], "exec_changes": []}


def test_config_overrides(sample_file):
    code, _ = _run(
        [str(sample_file), "--prefetch_batch", "2", "--packet.duration", "1.5"]
    )
    assert code == 0
    assert Config.prefetch_batch == 2
    assert Config.packet["duration"] == 1.5


def test_config_file_option(sample_file, tmp_path):
    cfg = tmp_path / "cfg.json"
    cfg.write_text(json.dumps({"tick_hz": 30}))
    _run([str(sample_file), "--config", str(cfg)])
    assert Config.tick_hz == 30


def test_headless_play(sample_file):
    clock = FakeClock()
    code, (result,) = _run(
        [str(sample_file), "--play", "--speed", "4", "--max-seconds", "1000"],
        clock=clock,
        sleep=clock.sleep,
    )
    assert code == 0
    assert result["status"] == "done"
    assert result["cycle"] == 7
    assert result["progress"] == 1.0
    assert result["telemetry"]["ticks"] >= 1


def test_headless_play_stops_after_max_seconds(sample_file):
    clock = FakeClock()
    _code, (result,) = _run(
        [str(sample_file), "--play", "--seek", "1", "--max-seconds", "0.25"],
        clock=clock,
        sleep=clock.sleep,
    )
    assert result["status"] == "paused"
    assert 1 <= result["cycle"] < 7


def test_missing_trace_returns_error(tmp_path):
    assert main([str(tmp_path / "missing.log")]) == 1
