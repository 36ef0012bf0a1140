"""Bounded in-memory containers for time-series samples.

Provides drop-oldest storage with predictable memory usage. Neither
container raises on overflow: the oldest data is evicted silently.
"""

import threading
from collections import deque
from collections.abc import Callable
from typing import Generic, TypeVar

from perfwatch.core.ports import ClockPort

T = TypeVar("T")

DEFAULT_SWEEP_EVERY = 64


class RingBuffer(Generic[T]):
    """Count-bounded circular buffer.

    When the buffer is full, pushing a new item evicts the single oldest
    item. Appends and evictions are guarded by a lock so the buffer can be
    shared between threads of a threaded server.

    Args:
        capacity: Maximum number of items to keep.
    """

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._buffer: deque[T] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._buffer)

    def push(self, item: T) -> None:
        """Append an item, evicting the oldest one when full."""
        with self._lock:
            self._buffer.append(item)

    def snapshot(self) -> tuple[T, ...]:
        """Return a read-only copy of the items, oldest first."""
        with self._lock:
            return tuple(self._buffer)

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()

    def evict_older_than(self, cutoff: float, key: Callable[[T], float]) -> int:
        """Remove items from the old end whose key is at or before cutoff.

        Stops at the first item newer than cutoff, so the write head is
        never touched.

        Returns:
            Number of evicted items.
        """
        removed = 0
        with self._lock:
            while self._buffer and key(self._buffer[0]) <= cutoff:
                self._buffer.popleft()
                removed += 1
        return removed


class TimeWindowBuffer(Generic[T]):
    """Time-bounded buffer that discards items older than a retention window.

    Expired items are removed by a sweep that runs every ``sweep_every``
    pushes (amortised O(1)) or on demand through :meth:`sweep`. Snapshots
    never include expired items, even between sweeps.

    Args:
        retention_ms: Maximum age of an item in milliseconds.
        clock: Source of the current time.
        key: Extracts the timestamp (epoch ms) of an item.
        sweep_every: Number of pushes between automatic sweeps.
    """

    def __init__(
        self,
        retention_ms: float,
        clock: ClockPort,
        key: Callable[[T], float],
        sweep_every: int = DEFAULT_SWEEP_EVERY,
    ) -> None:
        self._retention_ms = retention_ms
        self._clock = clock
        self._key = key
        self._sweep_every = max(1, sweep_every)
        self._pushes_since_sweep = 0
        self._buffer: deque[T] = deque()
        self._lock = threading.Lock()

    @property
    def retention_ms(self) -> float:
        return self._retention_ms

    def __len__(self) -> int:
        return len(self._buffer)

    def push(self, item: T) -> None:
        with self._lock:
            self._buffer.append(item)
            self._pushes_since_sweep += 1
            due = self._pushes_since_sweep >= self._sweep_every
        if due:
            self.sweep()

    def snapshot(self) -> tuple[T, ...]:
        """Return the unexpired items, oldest first."""
        cutoff = self._clock.now() - self._retention_ms
        with self._lock:
            return tuple(item for item in self._buffer if self._key(item) > cutoff)

    def sweep(self, now: float | None = None) -> int:
        """Drop expired items from the old end.

        Args:
            now: Reference time in epoch ms. Defaults to the clock's time.

        Returns:
            Number of removed items.
        """
        reference = self._clock.now() if now is None else now
        cutoff = reference - self._retention_ms
        removed = 0
        with self._lock:
            while self._buffer and self._key(self._buffer[0]) <= cutoff:
                self._buffer.popleft()
                removed += 1
            self._pushes_since_sweep = 0
        return removed

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()
            self._pushes_since_sweep = 0
