# config.py

import json
import os

import yaml


class Config:
    """Global defaults for the trace replay engine.

    Values live on the class so the CLI can expose every attribute as an
    override flag. Sessions read them when constructed; changing a value does
    not affect sessions that already exist.

    Attributes
    ----------
    base_cycles_per_second:
        Logical cycles replayed per wall-clock second at speed multiplier 1.
    max_cycles_per_tick:
        Upper bound on cycles applied by one scheduler tick. Limits catch-up
        after the host stalls for a long time.
    prefetch_batch:
        Number of indexed cycles requested by a single prefetch.
    prefetch_max_bytes:
        Byte budget of a single prefetch; at least one cycle block is always
        loaded even if it exceeds the budget.
    lookahead_margin:
        A new prefetch is issued once playback is within this many indexed
        cycles of the end of the cached window.
    cache_trail_cycles:
        Cached cycles further than this behind the playback position are
        evicted.
    tick_hz:
        Tick rate used by the headless replay loop.
    packet:
        Timing of in-flight packet visuals in seconds: ``duration`` of a
        direct hop, ``fade_in``/``fade_out`` windows and ``hop_delay`` for
        multi-hop paths.
    event_log:
        When ``True`` session events are appended as JSON lines under
        :attr:`output_dir`.
    log_files:
        ``category`` -> {``label``: bool} switches for individual event
        records.
    """

    base_dir = os.path.abspath(os.path.dirname(__file__))
    config_file = os.path.join(base_dir, "input", "config.json")
    output_dir = os.path.join(base_dir, "output")

    @staticmethod
    def output_path(*parts: str) -> str:
        """Return absolute path under the output directory."""
        return os.path.join(Config.output_dir, *parts)

    base_cycles_per_second = 10.0
    max_cycles_per_tick = 1000
    prefetch_batch = 256
    prefetch_max_bytes = 4 * 1024 * 1024
    lookahead_margin = 64
    cache_trail_cycles = 32
    tick_hz = 60

    packet = {
        "duration": 0.6,
        "fade_in": 0.15,
        "fade_out": 0.15,
        "hop_delay": 0.3,
    }

    log_verbosity = "info"
    event_log = False

    DEFAULT_LOG_FILES = {
        "session": {
            "load": True,
            "seek": True,
            "stall": True,
            "prefetch": True,
            "discard": True,
        },
        "metrics": {
            "cycle_counts": True,
        },
    }

    log_files = {k: dict(v) for k, v in DEFAULT_LOG_FILES.items()}

    @classmethod
    def is_log_enabled(cls, category: str, label: str | None = None) -> bool:
        """Return ``True`` if a record should be written."""

        if not cls.event_log:
            return False
        cfg = cls.log_files.get(category, {})
        if label is not None and not cfg.get(label, True):
            return False
        return True

    @classmethod
    def packet_timing(cls) -> dict[str, float]:
        return {k: float(v) for k, v in cls.packet.items()}

    @classmethod
    def load_from_file(cls, path: str) -> None:
        """Load configuration values from a JSON or YAML file.

        Only keys that already exist as attributes on ``Config`` are
        assigned. Nested dictionaries are merged when the existing attribute
        is also a ``dict``. Relative paths under the ``paths`` section are
        resolved relative to the directory containing ``path``.

        Parameters
        ----------
        path:
            Path to the configuration file. ``.yaml``/``.yml`` files are read
            with PyYAML, anything else as JSON.
        """

        if not os.path.exists(path):
            raise FileNotFoundError(path)
        data = _read_mapping(path)
        cls.config_file = os.path.abspath(path)
        base_dir = os.path.dirname(cls.config_file)

        paths = data.get("paths")
        if isinstance(paths, dict):
            for key, value in paths.items():
                if hasattr(cls, key):
                    if not os.path.isabs(value):
                        value = os.path.join(base_dir, value)
                    setattr(cls, key, os.path.abspath(value))

        for key, value in data.items():
            if key == "paths" or not hasattr(cls, key):
                continue
            current = getattr(cls, key)
            if isinstance(current, dict) and isinstance(value, dict):
                _deep_update(current, value)
            else:
                setattr(cls, key, value)


def _deep_update(target: dict, values: dict) -> None:
    """Recursively merge ``values`` into ``target`` in place."""
    for key, value in values.items():
        if isinstance(target.get(key), dict) and isinstance(value, dict):
            _deep_update(target[key], value)
        else:
            target[key] = value


def _read_mapping(path: str) -> dict:
    if path.endswith((".yaml", ".yml")):
        with open(path) as f:
            data = yaml.safe_load(f)
    else:
        with open(path) as f:
            data = json.load(f)
    return data or {}


def load_config(path: str | None = None) -> dict:
    """Load configuration from ``path`` and return the data."""
    if path is None:
        path = Config.config_file
    Config.load_from_file(path)
    return _read_mapping(path)
