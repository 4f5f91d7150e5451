"""Exceptions raised by the trace engine.

Trace content never raises: malformed lines are skipped, out-of-range seeks
are clamped and empty range requests return nothing. Only misuse of the API
and I/O failures surface as exceptions.
"""

from __future__ import annotations


class TraceSourceError(ValueError):
    """Raised when an object cannot be used as a trace source."""


class PrefetchFailed(RuntimeError):
    """Wraps an I/O error raised inside an asynchronous prefetch."""

    def __init__(self, first_cycle: int, last_cycle: int, cause: BaseException):
        super().__init__(
            f"prefetch of cycles {first_cycle}..{last_cycle} failed: {cause}"
        )
        self.first_cycle = first_cycle
        self.last_cycle = last_cycle
        self.cause = cause
