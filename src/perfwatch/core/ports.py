"""Port interfaces for host environments, clocks and schedulers.

These protocols define the contracts the core depends on. Adapters
(psutil process probe, beacon host, asyncio scheduler) implement them.
"""

from collections.abc import Callable
from typing import Protocol, runtime_checkable

from perfwatch.core.models import HeapInfo, PerformanceEntry


@runtime_checkable
class ClockPort(Protocol):
    """Source of time.

    ``now`` is wall-clock epoch milliseconds used for timestamps and
    retention. ``perf`` is a monotonic millisecond reading used for
    measuring durations.
    """

    def now(self) -> float: ...

    def perf(self) -> float: ...


@runtime_checkable
class CancelHandle(Protocol):
    """Handle for a cancellable resource. ``cancel`` must be idempotent."""

    def cancel(self) -> None: ...

    @property
    def cancelled(self) -> bool: ...


@runtime_checkable
class SchedulerPort(Protocol):
    """Runs a callback periodically until the returned handle is cancelled."""

    def call_every(self, interval_ms: float, callback: Callable[[], None]) -> CancelHandle:
        ...


@runtime_checkable
class MemoryProbePort(Protocol):
    """Reads heap usage. Returns None when no reading is currently available."""

    def read(self) -> HeapInfo | None: ...


@runtime_checkable
class EntrySourcePort(Protocol):
    """Push-based source of performance entries.

    Registering a callback delivers every future entry of ``entry_type``
    until the returned handle is cancelled.
    """

    def observe(
        self, entry_type: str, callback: Callable[[list[PerformanceEntry]], None]
    ) -> CancelHandle:
        ...


@runtime_checkable
class HostEnvironmentPort(Protocol):
    """A client host (browser tab) exposing optional capabilities.

    Each accessor returns None when the host lacks the capability.
    """

    def memory_probe(self) -> MemoryProbePort | None: ...

    def entry_source(self) -> EntrySourcePort | None: ...
