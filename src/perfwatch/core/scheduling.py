"""Cancellable periodic tasks.

Periodic work (memory sampling, retention sweeps) is scheduled through a
scheduler that returns a :class:`ScheduledTask` handle. Cancelling the
handle stops future runs; cancelling twice is harmless.
"""

import asyncio
import logging
from collections.abc import Callable

from perfwatch.core.clock import ManualClock
from perfwatch.core.logs import log_exception

logger = logging.getLogger(__name__)


class ScheduledTask:
    """Handle for a periodic callback.

    Args:
        name: Label used in log messages.
        interval_ms: Period between runs.
        callback: Function invoked on every tick.
        on_cancel: Hook releasing the underlying timer.
    """

    def __init__(
        self,
        name: str,
        interval_ms: float,
        callback: Callable[[], None],
        on_cancel: Callable[[], None] | None = None,
    ) -> None:
        self.name = name
        self.interval_ms = interval_ms
        self._callback = callback
        self._on_cancel = on_cancel
        self._cancelled = False
        self.runs = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def run(self) -> None:
        """Invoke the callback once. Faults are logged, never propagated."""
        if self._cancelled:
            return
        self.runs += 1
        try:
            self._callback()
        except Exception:
            log_exception("Scheduled task failed", task=self.name)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._on_cancel is not None:
            self._on_cancel()
        logger.debug("Cancelled scheduled task %s", self.name)


def _task_name(callback: Callable[[], None]) -> str:
    return getattr(callback, "__qualname__", None) or repr(callback)


class AsyncioScheduler:
    """Scheduler running callbacks on an asyncio event loop.

    Uses ``loop.call_later`` so ticks never suspend other coroutines for
    longer than the callback itself takes.

    Args:
        loop: Event loop to schedule on. Defaults to the running loop at
              the time :meth:`call_every` is called.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_every(self, interval_ms: float, callback: Callable[[], None]) -> ScheduledTask:
        loop = self._get_loop()
        delay = interval_ms / 1000.0
        handle: asyncio.TimerHandle | None = None

        def release() -> None:
            if handle is not None:
                handle.cancel()

        task = ScheduledTask(_task_name(callback), interval_ms, callback, release)

        def tick() -> None:
            nonlocal handle
            task.run()
            if not task.cancelled:
                handle = loop.call_later(delay, tick)

        handle = loop.call_later(delay, tick)
        return task


class ManualScheduler:
    """Scheduler driven by a :class:`ManualClock`.

    Calling :meth:`advance` moves the clock forward and runs every task
    that came due, in time order.
    """

    def __init__(self, clock: ManualClock) -> None:
        self.clock = clock
        self._due: dict[ScheduledTask, float] = {}

    def call_every(self, interval_ms: float, callback: Callable[[], None]) -> ScheduledTask:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        task: ScheduledTask

        def release() -> None:
            self._due.pop(task, None)

        task = ScheduledTask(_task_name(callback), interval_ms, callback, release)
        self._due[task] = self.clock.now() + interval_ms
        return task

    @property
    def active_tasks(self) -> list[ScheduledTask]:
        return list(self._due)

    def advance(self, ms: float) -> None:
        target = self.clock.now() + ms
        while True:
            pending = [(due, task) for task, due in self._due.items() if due <= target]
            if not pending:
                break
            due, task = min(pending, key=lambda item: item[0])
            self.clock.advance(due - self.clock.now())
            self._due[task] = due + task.interval_ms
            task.run()
        self.clock.advance(target - self.clock.now())
