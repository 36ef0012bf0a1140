"""Composition root wiring collectors, alerts and reporting together.

Build one :class:`PerformanceMonitor` when the application starts and pass
it to the request middleware and the report endpoint.
"""

import logging
from typing import Any

from perfwatch.adapters.process import probe_process_memory
from perfwatch.core.alerts import AlertEngine
from perfwatch.core.client import ClientMetricsCollector
from perfwatch.core.clock import SystemClock
from perfwatch.core.config import PerformanceConfig
from perfwatch.core.logs import timed
from perfwatch.core.ports import (
    CancelHandle,
    ClockPort,
    HostEnvironmentPort,
    MemoryProbePort,
    SchedulerPort,
)
from perfwatch.core.report import ReportAggregator
from perfwatch.core.scheduling import AsyncioScheduler
from perfwatch.core.server import ServerMetricsCollector

logger = logging.getLogger(__name__)


class PerformanceMonitor:
    """One monitor per process.

    Args:
        config: Thresholds and intervals (default: PerformanceConfig()).
        clock: Source of time shared by every component.
        memory_probe: Process memory probe. When omitted and
            ``probe_process`` is true, the psutil probe is used if available.
        probe_process: Whether to probe the process memory API.
        host: Client host; when given, a client collector is attached.
        enable_client: Force the client collector on or off.
        component_name: Default component label for client renders.
    """

    def __init__(
        self,
        config: PerformanceConfig | None = None,
        clock: ClockPort | None = None,
        memory_probe: MemoryProbePort | None = None,
        probe_process: bool = True,
        host: HostEnvironmentPort | None = None,
        enable_client: bool | None = None,
        component_name: str = "component",
    ) -> None:
        self.config = config or PerformanceConfig()
        self.clock = clock or SystemClock()
        if memory_probe is None and probe_process:
            memory_probe = probe_process_memory()
        self.alerts = AlertEngine(
            cooldown_ms=self.config.alert_cooldown_ms,
            retention_ms=self.config.metrics_retention_ms,
            clock=self.clock,
        )
        self.server = ServerMetricsCollector(
            config=self.config,
            alerts=self.alerts,
            clock=self.clock,
            memory_probe=memory_probe,
        )
        self.client: ClientMetricsCollector | None = None
        if enable_client or (enable_client is None and host is not None):
            self.client = ClientMetricsCollector(
                config=self.config,
                alerts=self.alerts,
                clock=self.clock,
                host=host,
                component_name=component_name,
            )
        self.reports = ReportAggregator(
            server=self.server,
            alerts=self.alerts,
            client=self.client,
            clock=self.clock,
        )
        self._tasks: list[CancelHandle] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def start(self, scheduler: SchedulerPort | None = None) -> None:
        """Start the retention sweep, memory sampling and vitals observation.

        Without a scheduler, the running asyncio loop is used. Calling
        start on a running monitor does nothing.
        """
        if self._tasks:
            return
        scheduler = scheduler or AsyncioScheduler()
        self._tasks.append(scheduler.call_every(self.config.cleanup_interval_ms, self.sweep))
        if self.server.memory_probe is not None:
            self._tasks.append(
                scheduler.call_every(
                    self.config.memory_sample_interval_ms, self.server.sample_memory
                )
            )
        if self.client is not None:
            self.client.scheduler = scheduler
            self.client.observe_web_vitals()
            self.client.monitor_memory()
        logger.info("Performance monitor started")

    def stop(self) -> None:
        """Cancel every timer and subscription. Idempotent."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if self.client is not None:
            self.client.dispose()
        if tasks:
            logger.info("Performance monitor stopped")

    def sweep(self) -> None:
        """Drop samples and alerts older than the retention window."""
        now = self.clock.now()
        with timed("Performance metrics cleanup"):
            removed = self.server.sweep(now) + self.alerts.sweep(now)
        logger.debug("Performance metrics cleanup removed %d entries", removed)

    def reset(self) -> None:
        """Forget all metrics and alerts."""
        self.server.reset()
        if self.client is not None:
            self.client.reset()
        self.alerts.reset()

    def report(self) -> dict[str, Any]:
        return self.reports.build_report()

    def __enter__(self) -> "PerformanceMonitor":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()
