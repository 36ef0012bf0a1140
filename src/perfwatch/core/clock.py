"""Clock implementations."""

import time


class SystemClock:
    """Clock backed by ``time.time`` and ``time.perf_counter``."""

    def now(self) -> float:
        return time.time() * 1000.0

    def perf(self) -> float:
        return time.perf_counter() * 1000.0


class ManualClock:
    """Clock that only moves when told to.

    Both readings advance together, which keeps durations and timestamps
    consistent in deterministic tests.

    Args:
        start: Initial epoch milliseconds.
    """

    def __init__(self, start: float = 1_700_000_000_000.0) -> None:
        self._now = start
        self._perf = 0.0

    def now(self) -> float:
        return self._now

    def perf(self) -> float:
        return self._perf

    def advance(self, ms: float) -> None:
        if ms < 0:
            raise ValueError("clock cannot move backwards")
        self._now += ms
        self._perf += ms
