import json

import pytest

from Trace_Replay.config import Config, load_config


def test_load_from_file_merges_nested_dicts(tmp_path):
    cfg = tmp_path / "config.json"
    cfg.write_text(json.dumps({"packet": {"duration": 1.5}, "prefetch_batch": 8}))
    Config.load_from_file(str(cfg))
    assert Config.prefetch_batch == 8
    assert Config.packet["duration"] == 1.5
    assert Config.packet["fade_in"] == 0.15
    assert Config.config_file == str(cfg)


def test_unknown_keys_are_ignored(tmp_path):
    cfg = tmp_path / "config.json"
    cfg.write_text(json.dumps({"not_a_setting": 1}))
    Config.load_from_file(str(cfg))
    assert not hasattr(Config, "not_a_setting")


def test_paths_are_resolved_relative_to_file(tmp_path):
    cfg = tmp_path / "config.json"
    cfg.write_text(json.dumps({"paths": {"output_dir": "out"}}))
    Config.load_from_file(str(cfg))
    assert Config.output_dir == str(tmp_path / "out")
    assert Config.output_path("metrics.csv") == str(tmp_path / "out" / "metrics.csv")


def test_yaml_config(tmp_path):
    cfg = tmp_path / "config.yaml"
    cfg.write_text("base_cycles_per_second: 25.0\nlog_files:\n  session:\n    stall: false\n")
    data = load_config(str(cfg))
    assert data["base_cycles_per_second"] == 25.0
    assert Config.base_cycles_per_second == 25.0
    assert Config.log_files["session"]["stall"] is False
    assert Config.log_files["session"]["seek"] is True


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        Config.load_from_file(str(tmp_path / "nope.json"))


def test_event_log_gates_categories():
    assert not Config.is_log_enabled("session", "load")
    Config.event_log = True
    assert Config.is_log_enabled("session", "load")
    Config.log_files["session"]["load"] = False
    assert not Config.is_log_enabled("session", "load")
    assert Config.is_log_enabled("session")
    assert Config.is_log_enabled("unknown", "label")


def test_packet_timing_returns_floats():
    Config.packet["hop_delay"] = 1
    timing = Config.packet_timing()
    assert timing["hop_delay"] == 1.0
    assert isinstance(timing["hop_delay"], float)
