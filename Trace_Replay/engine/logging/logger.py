from __future__ import annotations

"""JSON line event log and per-cycle metric counts for replay sessions."""

import csv
import json
from collections import Counter
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from ...config import Config


class MetricAggregator:
    """Aggregate event counts per applied cycle and write ``metrics.csv``."""

    FIELDS = ("landings", "exec_changes")

    def __init__(self, path: Path) -> None:
        self.path = path
        self.counts: Counter[str] = Counter()

    def add(self, category: str, amount: int = 1) -> None:
        """Increment the count for ``category``."""

        self.counts[category] += amount

    def flush(self, cycle: int) -> None:
        """Write accumulated counts for ``cycle`` to ``metrics.csv``."""

        if not self.counts:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        file_exists = self.path.exists()
        with self.path.open("a", newline="") as fh:
            fieldnames = ["cycle", *self.FIELDS]
            writer = csv.DictWriter(fh, fieldnames=fieldnames, extrasaction="ignore")
            if not file_exists:
                writer.writeheader()
            row = {name: self.counts.get(name, 0) for name in self.FIELDS}
            writer.writerow({"cycle": cycle, **row})
        self.counts.clear()


def log_record(
    category: str,
    label: str,
    *,
    cycle: int | None = None,
    value: dict[str, Any] | None = None,
    path: Path | None = None,
    **extra: Any,
) -> bool:
    """Append a record to ``<category>_log.jsonl`` if the label is enabled.

    Returns ``True`` when a line was written.
    """

    if not Config.is_log_enabled(category, label):
        return False
    if path is None:
        path = Path(Config.output_dir) / f"{category}_log.jsonl"
    path.parent.mkdir(parents=True, exist_ok=True)
    data: dict[str, Any] = {"label": label}
    if cycle is not None:
        data["cycle"] = cycle
    if value is not None:
        data.update(value)
    if extra:
        data.update(extra)
    with path.open("a") as fh:
        fh.write(json.dumps(data) + "\n")
    return True


def log_entry(category: str, label: str, entry: BaseModel) -> bool:
    """Serialise a pydantic log ``entry`` through :func:`log_record`."""

    return log_record(category, label, value=entry.model_dump(mode="json"))


def metrics_aggregator() -> MetricAggregator | None:
    """Return a fresh aggregator when per-cycle metrics are enabled."""

    if not Config.is_log_enabled("metrics", "cycle_counts"):
        return None
    return MetricAggregator(Path(Config.output_dir) / "metrics.csv")
