import copy
import sys
from collections import deque
from concurrent.futures import Executor, Future
from pathlib import Path

# Ensure package import for tests
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest

from Trace_Replay.config import Config

SAMPLE_TRACE = "\n".join(
    [
        "@0 dimX=2, dimY=2",
        "@1 P0.0:[EX OP] T0 FADDS r1, r2",
        "@1 P1.0:[EX OP] IDLE",
        "@2 P1.0 (x) landing C3 from link W, payload",
        "@3 router tick",
        "@4 P0.1:[EX OP] T1.a LD r3",
        "@4 P0.0:[EX OP] T0 FADDS r1, r2",
        "@5 P1.1 (y) landing C1 from link R, local",
        "@5 P0.0:[EX OP] IDLE",
        "@7 P1.0:[EX OP] T2 NOP",
        "@7 P0.1 (x) landing C2 from link N, z",
        "",
    ]
)


class ManualExecutor(Executor):
    """Executor that runs submitted work only when told to."""

    def __init__(self) -> None:
        self.pending: deque = deque()

    def submit(self, fn, /, *args, **kwargs) -> Future:
        future: Future = Future()
        self.pending.append((future, fn, args, kwargs))
        return future

    def run_next(self) -> bool:
        if not self.pending:
            return False
        future, fn, args, kwargs = self.pending.popleft()
        if not future.set_running_or_notify_cancel():
            return True
        try:
            result = fn(*args, **kwargs)
        except BaseException as exc:  # noqa: BLE001 - handed to the future
            future.set_exception(exc)
        else:
            future.set_result(result)
        return True

    def run_all(self) -> int:
        count = 0
        while self.run_next():
            count += 1
        return count

    def shutdown(self, wait: bool = True, *, cancel_futures: bool = False) -> None:
        if cancel_futures:
            while self.pending:
                self.pending.popleft()[0].cancel()


class ImmediateExecutor(ManualExecutor):
    """Executor that runs work synchronously inside ``submit``."""

    def submit(self, fn, /, *args, **kwargs) -> Future:
        future = super().submit(fn, *args, **kwargs)
        self.run_all()
        return future


class RecordingListener:
    def __init__(self) -> None:
        self.landings: list = []
        self.changes: list = []

    def landings_applied(self, cycle, landings) -> None:
        self.landings.append((cycle, list(landings)))

    def unit_states_changed(self, cycle, changes) -> None:
        self.changes.append((cycle, list(changes)))


@pytest.fixture(autouse=True)
def _restore_config():
    """Snapshot class-level ``Config`` values and restore them afterwards."""

    saved = {
        key: copy.deepcopy(value)
        for key, value in vars(Config).items()
        if not key.startswith("_")
        and not callable(value)
        and not isinstance(value, (classmethod, staticmethod))
    }
    yield
    for key, value in saved.items():
        setattr(Config, key, value)


@pytest.fixture
def sample_bytes() -> bytes:
    return SAMPLE_TRACE.encode()


@pytest.fixture
def sample_file(tmp_path) -> Path:
    path = tmp_path / "trace.log"
    path.write_bytes(SAMPLE_TRACE.encode())
    return path


@pytest.fixture
def manual_executor() -> ManualExecutor:
    return ManualExecutor()


@pytest.fixture
def immediate_executor() -> ImmediateExecutor:
    return ImmediateExecutor()
