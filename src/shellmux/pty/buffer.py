"""Bounded output history for terminal sessions."""

from __future__ import annotations

import threading

DEFAULT_HISTORY_SIZE = 100_000  # bytes


class OutputHistoryBuffer:
    """Thread-safe, byte-bounded history of terminal output.

    Keeps at most ``capacity`` bytes.  When an append pushes the buffer
    over capacity, the oldest bytes are dropped so that exactly the most
    recent ``capacity`` bytes remain.  The replay on reconnect is a
    ``snapshot()`` of this content.
    """

    def __init__(self, capacity: int = DEFAULT_HISTORY_SIZE) -> None:
        if capacity < 0:
            raise ValueError("capacity must be >= 0")
        self._capacity = capacity
        self._data = bytearray()
        self._lock = threading.Lock()

    def append(self, data: bytes) -> None:
        """Append a chunk, then truncate from the front if over capacity."""
        if not data:
            return
        with self._lock:
            if len(data) >= self._capacity:
                # Chunk alone fills the buffer
                self._data[:] = data[len(data) - self._capacity :]
                return
            self._data += data
            overflow = len(self._data) - self._capacity
            if overflow > 0:
                del self._data[:overflow]

    def snapshot(self) -> bytes:
        """Return a copy of the buffered content."""
        with self._lock:
            return bytes(self._data)

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __bool__(self) -> bool:
        return len(self) > 0
