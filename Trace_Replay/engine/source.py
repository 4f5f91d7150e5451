"""Byte-addressable backing stores for trace files."""

from __future__ import annotations

import io
import os
from pathlib import Path
from typing import BinaryIO, Protocol, runtime_checkable

from .errors import TraceSourceError


@runtime_checkable
class TraceSource(Protocol):
    """Anything that can stream its bytes and serve arbitrary byte ranges."""

    name: str

    def open_stream(self) -> BinaryIO:
        """Return a fresh binary stream positioned at offset 0."""

    def read_range(self, start: int, end: int) -> bytes:
        """Return the bytes in ``[start, end)``."""

    def size(self) -> int:
        """Return the total size in bytes."""


class FileSource:
    """Trace stored on disk.

    Each :meth:`read_range` call opens its own handle so prefetch workers never
    share a file position with the indexing pass.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)
        self.name = str(self.path)

    def open_stream(self) -> BinaryIO:
        return self.path.open("rb")

    def read_range(self, start: int, end: int) -> bytes:
        if end <= start:
            return b""
        with self.path.open("rb") as fh:
            fh.seek(start)
            return fh.read(end - start)

    def size(self) -> int:
        return self.path.stat().st_size

    def __repr__(self) -> str:  # pragma: no cover - trivial
        return f"FileSource({self.name!r})"


class BytesSource:
    """Trace held in memory, used by tests and small generated traces."""

    def __init__(self, data: bytes | str, name: str = "<memory>") -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._data = bytes(data)
        self.name = name

    def open_stream(self) -> BinaryIO:
        return io.BytesIO(self._data)

    def read_range(self, start: int, end: int) -> bytes:
        return self._data[max(start, 0) : max(end, 0)]

    def size(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:  # pragma: no cover - trivial
        return f"BytesSource({self.name!r}, {len(self._data)} bytes)"


def open_source(obj: object) -> TraceSource:
    """Coerce ``obj`` into a :class:`TraceSource`.

    Accepts an existing source, a filesystem path or raw ``bytes``.
    """

    if isinstance(obj, TraceSource):
        return obj
    if isinstance(obj, (str, os.PathLike)):
        return FileSource(obj)
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return BytesSource(bytes(obj))
    raise TraceSourceError(f"unsupported trace source: {type(obj).__name__}")
