import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


def new_log_id() -> str:
    """Return a unique identifier for a log entry."""
    return f"log_{uuid.uuid4()}"


class BaseLogEntry(BaseModel):
    """Common metadata for all session log entries."""

    log_id: str = Field(default_factory=new_log_id)
    cycle: Optional[int] = None
    generation: int = 0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class LoadPayload(BaseModel):
    source: str
    dim_x: int
    dim_y: int
    min_cycle: int
    max_cycle: int
    cycles: int
    events: int


class LoadLog(BaseLogEntry):
    event_type: str = "TraceLoaded"
    payload: LoadPayload


class SeekPayload(BaseModel):
    requested: int
    target: int
    clamped: bool
    units: int


class SeekLog(BaseLogEntry):
    event_type: str = "Seek"
    payload: SeekPayload


class StallPayload(BaseModel):
    missing_cycle: int
    prefetch_in_flight: bool


class StallLog(BaseLogEntry):
    event_type: str = "Stall"
    payload: StallPayload


class PrefetchPayload(BaseModel):
    from_idx: int
    to_idx: int
    entries: int
    first_cycle: Optional[int] = None
    last_cycle: Optional[int] = None
    latency: Optional[float] = None
    error: Optional[str] = None


class PrefetchLog(BaseLogEntry):
    event_type: str = "PrefetchMerged"
    payload: PrefetchPayload


class DiscardLog(BaseLogEntry):
    event_type: str = "PrefetchDiscarded"
    payload: PrefetchPayload
