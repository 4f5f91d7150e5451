# main.py

"""Command line entry point for indexing and replaying trace logs."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from dataclasses import dataclass, field
from typing import Any, Callable, TextIO

from Trace_Replay.config import Config


# Internal Config attributes that should not be exposed as CLI flags
_PRIVATE_KEYS = {
    "base_dir",
    "config_file",
    "DEFAULT_LOG_FILES",
    "log_files",
    "log_verbosity",
}


def _configure_logging(level: str = "info") -> None:
    """Configure application logging and capture uncaught exceptions."""

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    def _log_excepthook(exc_type, exc, tb) -> None:
        logging.getLogger(__name__).exception(
            "Uncaught exception", exc_info=(exc_type, exc, tb)
        )

    sys.excepthook = _log_excepthook


def _add_config_args(
    parser: argparse.ArgumentParser, data: dict[str, Any], prefix: str = ""
) -> None:
    """Recursively add CLI flags based on ``data`` keys."""
    for key, value in data.items():
        if key in _PRIVATE_KEYS:
            continue
        arg_name = f"--{prefix}{key}"
        dest = f"{prefix}{key}".replace(".", "_")
        if isinstance(value, dict):
            _add_config_args(parser, value, prefix=f"{prefix}{key}.")
            continue
        if isinstance(value, bool):
            parser.add_argument(arg_name, type=lambda x: x.lower() == "true", dest=dest)
        else:
            parser.add_argument(arg_name, type=type(value), dest=dest)


def _config_defaults() -> dict[str, Any]:
    """Return a dictionary of all attributes defined on :class:`Config`."""
    defaults: dict[str, Any] = {}
    for key, value in Config.__dict__.items():
        if key.startswith("_") or key in _PRIVATE_KEYS:
            continue
        if callable(value) or isinstance(value, (classmethod, staticmethod)):
            continue
        defaults[key] = value
    return defaults


def _apply_overrides(
    args: argparse.Namespace, data: dict[str, Any], prefix: str = ""
) -> None:
    """Apply CLI overrides back onto :class:`Config`."""
    for key, value in data.items():
        if key in _PRIVATE_KEYS:
            continue
        full = f"{prefix}{key}"
        dest = full.replace(".", "_")
        override = getattr(args, dest, None)
        if override is not None:
            parts = full.split(".")
            target = Config
            for part in parts[:-1]:
                target = getattr(target, part)
            if isinstance(target, dict):
                target[parts[-1]] = override
            else:
                setattr(target, parts[-1], override)
        elif isinstance(value, dict):
            _apply_overrides(args, value, prefix=f"{full}.")


def _cycle_json(entry) -> dict[str, Any]:
    return {
        "cycle": entry.cycle,
        "landings": [
            {
                "x": ev.x,
                "y": ev.y,
                "color": ev.color,
                "link": ev.link,
                "source": list(ev.source) if ev.source else None,
            }
            for ev in entry.landings
        ],
        "exec_changes": [
            {"x": ev.x, "y": ev.y, "busy": ev.busy, "opcode": ev.opcode}
            for ev in entry.exec_changes
        ],
    }


@dataclass
class MainService:
    """Handle CLI parsing and dispatch to the requested action."""

    argv: list[str] | None = None
    out: TextIO = field(default_factory=lambda: sys.stdout)
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], None] = time.sleep

    def run(self) -> int:
        args, cfg = self._parse_args()
        _apply_overrides(args, cfg)
        _configure_logging(args.log_level or Config.log_verbosity)
        if not os.path.exists(args.trace):
            logging.getLogger(__name__).error("trace file not found: %s", args.trace)
            return 1

        from Trace_Replay.engine.index import build_index

        index = build_index(args.trace)
        if args.summary:
            self._print(index.summary())
        if args.dump_cycle is not None:
            self._dump_cycle(index, args.dump_cycle)
        if args.play:
            self._run_headless(index, args)
        return 0

    # ------------------------------------------------------------------
    def _parse_args(self) -> tuple[argparse.Namespace, dict[str, Any]]:
        initial = argparse.ArgumentParser(add_help=False)
        initial.add_argument(
            "--config",
            default=None,
            help="Path to JSON or YAML configuration file",
        )
        known, _ = initial.parse_known_args(self.argv)
        if known.config:
            Config.load_from_file(known.config)

        parser = argparse.ArgumentParser(
            parents=[initial], description="Index and replay simulator traces"
        )
        parser.add_argument("trace", help="Path to the trace log")
        parser.add_argument(
            "--summary", action="store_true", help="Print the index summary as JSON"
        )
        parser.add_argument(
            "--dump-cycle",
            type=int,
            default=None,
            help="Print the events of one cycle as JSON",
        )
        parser.add_argument(
            "--play", action="store_true", help="Run a headless timed replay"
        )
        parser.add_argument(
            "--speed", type=float, default=1.0, help="Playback speed multiplier"
        )
        parser.add_argument(
            "--seek", type=int, default=None, help="Cycle to seek to before playing"
        )
        parser.add_argument(
            "--max-seconds",
            type=float,
            default=None,
            help="Stop the replay after this many wall-clock seconds",
        )
        parser.add_argument(
            "--log-level",
            default=None,
            choices=["debug", "info", "warning", "error"],
            help="Logging verbosity",
        )
        defaults = _config_defaults()
        _add_config_args(parser, defaults)
        args = parser.parse_args(self.argv)
        return args, defaults

    def _print(self, data: Any) -> None:
        self.out.write(json.dumps(data, sort_keys=True) + "\n")

    # ------------------------------------------------------------------
    def _dump_cycle(self, index, cycle: int) -> None:
        from Trace_Replay.engine.index import find_cycle_index
        from Trace_Replay.engine.loader import load_cycle_range
        from Trace_Replay.engine.models import CacheEntry

        pos = find_cycle_index(index.cycle_index, cycle)
        entries = load_cycle_range(index, pos, pos)
        self._print(_cycle_json(entries.get(cycle, CacheEntry(cycle))))

    def _run_headless(self, index, args: argparse.Namespace) -> None:
        """Replay ``index`` in real time until done or out of time."""

        from Trace_Replay.engine.scheduler import PlaybackScheduler
        from Trace_Replay.engine.models import PlaybackStatus

        log = logging.getLogger(__name__)
        period = 1.0 / max(float(Config.tick_hz), 1.0)
        with PlaybackScheduler(clock=self.clock) as session:
            session.load(index)
            session.set_speed(args.speed)
            if args.seek is not None:
                session.seek(args.seek)
            start = self.clock()
            session.play()
            try:
                while session.status is PlaybackStatus.PLAYING:
                    if args.max_seconds is not None:
                        if self.clock() - start >= args.max_seconds:
                            session.pause()
                            break
                    session.tick()
                    self.sleep(period)
            except KeyboardInterrupt:
                session.pause()
            log.info(
                "stopped at cycle %d of %d (%s)",
                session.current_cycle,
                session.state.max_cycle,
                session.status.value,
            )
            self._print(
                {
                    "cycle": session.current_cycle,
                    "status": session.status.value,
                    "progress": session.state.progress,
                    "telemetry": session.telemetry.summary(),
                }
            )


def main(argv: list[str] | None = None) -> int:
    return MainService(argv=argv).run()


if __name__ == "__main__":
    raise SystemExit(main())
