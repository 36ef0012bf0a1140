"""Client-side (browser) render, interaction, network and vitals instrumentation.

The collector runs on a single UI thread. Render and interaction calls are
synchronous brackets around existing work. The web-vitals subscription
and the memory timer are the only asynchronous sources; both are released
by :meth:`ClientMetricsCollector.dispose`.
"""

import logging
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from perfwatch.core.alerts import AlertEngine, AlertObservation
from perfwatch.core.capabilities import probe_entry_source, probe_memory, read_memory_ratio
from perfwatch.core.clock import SystemClock
from perfwatch.core.config import PerformanceConfig
from perfwatch.core.logs import log_exception
from perfwatch.core.models import (
    AlertType,
    InteractionMetric,
    MemorySample,
    NetworkMetric,
    PerformanceEntry,
    RenderMetric,
    VitalKind,
    WebVital,
)
from perfwatch.core.ports import (
    CancelHandle,
    ClockPort,
    HostEnvironmentPort,
    MemoryProbePort,
    SchedulerPort,
)
from perfwatch.core.retention import RingBuffer
from perfwatch.core.server import clean_duration
from perfwatch.core.trend import TrendDetector, memory_direction

logger = logging.getLogger(__name__)

LCP_ENTRY = "largest-contentful-paint"
FID_ENTRY = "first-input"
CLS_ENTRY = "layout-shift"


class Subscription:
    """Cancels a group of entry-source registrations at once."""

    def __init__(self, handles: list[CancelHandle]) -> None:
        self._handles = handles
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        for handle in self._handles:
            try:
                handle.cancel()
            except Exception:
                log_exception("Failed to cancel performance entry subscription")


def format_bytes(size: float) -> str:
    """Render a byte count as e.g. "1.5 MB"."""
    if size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB"]
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {units[index]}"


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _p95(values: list[float]) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    return ordered[min(int(len(ordered) * 0.95), len(ordered) - 1)]


class ClientMetricsCollector:
    """Collects render, interaction, network, web-vital and memory metrics.

    Args:
        config: Thresholds and capacities.
        alerts: Alert engine receiving slow/large/leak observations.
        clock: Source of time; ``perf`` readings bracket renders and interactions.
        host: Host environment probed for memory and performance entries.
        scheduler: Runs the periodic memory sampler.
        component_name: Default component label for render measurements.
        trend_detector: Memory drift detector.
    """

    def __init__(
        self,
        config: PerformanceConfig | None = None,
        alerts: AlertEngine | None = None,
        clock: ClockPort | None = None,
        host: HostEnvironmentPort | None = None,
        scheduler: SchedulerPort | None = None,
        component_name: str = "component",
        trend_detector: TrendDetector | None = None,
    ) -> None:
        self.config = config or PerformanceConfig()
        self._clock = clock or SystemClock()
        self.alerts = alerts or AlertEngine(
            self.config.alert_cooldown_ms, self.config.metrics_retention_ms, self._clock
        )
        self.host = host
        self.scheduler = scheduler
        self.component_name = component_name
        self.trend_detector = trend_detector or TrendDetector()
        capacity = self.config.client_capacity
        self._renders: RingBuffer[RenderMetric] = RingBuffer(capacity)
        self._interactions: RingBuffer[InteractionMetric] = RingBuffer(capacity)
        self._network: RingBuffer[NetworkMetric] = RingBuffer(capacity)
        self._memory: RingBuffer[MemorySample] = RingBuffer(self.config.memory_capacity)
        self._vitals: dict[VitalKind, WebVital] = {}
        self._cls_total = 0.0
        self._render_start: float | None = None
        self._total_renders = 0
        self._slow_renders = 0
        self._memory_probe: MemoryProbePort | None = None
        self._vitals_subscription: Subscription | None = None
        self._memory_task: CancelHandle | None = None

    # === Renders ===

    def start_render_measurement(self) -> None:
        """Mark the start of a render cycle."""
        self._render_start = self._clock.perf()

    def end_render_measurement(self, component_name: str | None = None) -> RenderMetric | None:
        """Record the render started by start_render_measurement.

        Calls without a pending start are ignored.
        """
        start = self._render_start
        if start is None:
            return None
        self._render_start = None
        try:
            return self._record_render(component_name or self.component_name, self._clock.perf() - start)
        except Exception:
            log_exception("Failed to record render metric")
            return None

    @contextmanager
    def measure_render(self, component_name: str | None = None) -> Generator[None]:
        """Bracket a render cycle. The render is recorded even if the block raises."""
        self.start_render_measurement()
        try:
            yield
        finally:
            self.end_render_measurement(component_name)

    def _record_render(self, name: str, elapsed: float) -> RenderMetric | None:
        duration = clean_duration(elapsed)
        if duration is None:
            return None
        metric = RenderMetric(component_name=name, duration_ms=duration, timestamp=self._clock.now())
        self._renders.push(metric)
        self._total_renders += 1
        threshold = self.config.slow_render_threshold_ms
        if duration > threshold:
            self._slow_renders += 1
            self.alerts.evaluate(
                AlertObservation(
                    type=AlertType.SLOW_RENDER,
                    message=f"Slow render detected: {duration:.2f}ms in {name}",
                    payload={
                        "render_time_ms": duration,
                        "component_name": name,
                        "threshold_ms": threshold,
                    },
                    key=name,
                )
            )
        return metric

    # === Interactions ===

    def perf_now(self) -> float:
        """Monotonic reading to pass as ``start_time`` to track_interaction."""
        return self._clock.perf()

    def track_interaction(self, name: str, start_time: float) -> InteractionMetric | None:
        """Record the delay of a user interaction.

        Args:
            name: Interaction label, e.g. "submit-schedule".
            start_time: perf_now() reading taken when the input arrived.
        """
        try:
            delay = clean_duration(self._clock.perf() - start_time)
            if delay is None:
                return None
            metric = InteractionMetric(name=name, delay_ms=delay, timestamp=self._clock.now())
            self._interactions.push(metric)
            threshold = self.config.slow_interaction_threshold_ms
            if delay > threshold:
                self.alerts.evaluate(
                    AlertObservation(
                        type=AlertType.SLOW_INTERACTION,
                        message=f"Slow interaction detected: {name} took {delay:.2f}ms",
                        payload={
                            "delay_ms": delay,
                            "interaction_name": name,
                            "threshold_ms": threshold,
                        },
                        key=name,
                    )
                )
            return metric
        except Exception:
            log_exception("Failed to record interaction metric")
            return None

    # === Network ===

    def track_network_request(
        self,
        url: str,
        method: str,
        duration_ms: float,
        size_bytes: int,
        status: int,
    ) -> NetworkMetric | None:
        """Record a network call made by the page."""
        try:
            duration = clean_duration(duration_ms)
            size = clean_duration(size_bytes)
            if duration is None or size is None:
                logger.debug("Discarding malformed network metric for %s", url)
                return None
            metric = NetworkMetric(
                url=url,
                method=method.upper(),
                duration_ms=duration,
                size_bytes=int(size),
                status=int(status),
                timestamp=self._clock.now(),
            )
            self._network.push(metric)
            threshold = self.config.large_payload_bytes
            if metric.size_bytes > threshold:
                self.alerts.evaluate(
                    AlertObservation(
                        type=AlertType.LARGE_PAYLOAD,
                        message=(
                            f"Large payload detected: "
                            f"{metric.size_bytes / 1024 / 1024:.2f}MB from {url}"
                        ),
                        payload={
                            "url": url,
                            "size_bytes": metric.size_bytes,
                            "size_formatted": format_bytes(metric.size_bytes),
                            "threshold_bytes": threshold,
                        },
                        key=url,
                    )
                )
            return metric
        except Exception:
            log_exception("Failed to record network metric", url=str(url))
            return None

    # === Web vitals ===

    def observe_web_vitals(self) -> Subscription | None:
        """Subscribe to LCP, FID and CLS entries from the host.

        Repeated calls return the active subscription.

        Returns:
            The subscription handle, or None when the host has no
            performance-entry support.
        """
        if self._vitals_subscription is not None and not self._vitals_subscription.cancelled:
            return self._vitals_subscription
        source = probe_entry_source(self.host)
        if source is None:
            return None
        handles: list[CancelHandle] = []
        try:
            handles.append(source.observe(LCP_ENTRY, self._on_lcp_entries))
            handles.append(source.observe(FID_ENTRY, self._on_fid_entries))
            handles.append(source.observe(CLS_ENTRY, self._on_cls_entries))
        except Exception:
            log_exception("Performance entry source not fully supported", level=logging.WARNING)
        self._vitals_subscription = Subscription(handles)
        return self._vitals_subscription

    def _set_vital(self, kind: VitalKind, value: float) -> None:
        self._vitals[kind] = WebVital(kind=kind, value=value, timestamp=self._clock.now())

    def _on_lcp_entries(self, entries: list[PerformanceEntry]) -> None:
        # Latest candidate wins; negative or non-finite start times are discarded
        for entry in reversed(entries):
            if entry.start_time >= 0:
                value = clean_duration(entry.start_time)
                if value is not None:
                    self._set_vital(VitalKind.LCP, value)
                return

    def _on_fid_entries(self, entries: list[PerformanceEntry]) -> None:
        for entry in entries:
            delay = entry.processing_start - entry.start_time
            if delay < 0:
                continue
            value = clean_duration(delay)
            if value is not None:
                self._set_vital(VitalKind.FID, value)

    def _on_cls_entries(self, entries: list[PerformanceEntry]) -> None:
        for entry in entries:
            if not entry.had_recent_input and entry.value >= 0:
                self._cls_total += entry.value
        self._set_vital(VitalKind.CLS, self._cls_total)

    def web_vitals(self) -> dict[VitalKind, WebVital]:
        return dict(self._vitals)

    # === Memory ===

    def monitor_memory(self) -> CancelHandle | None:
        """Start periodic memory sampling.

        Repeated calls return the active task.

        Returns:
            The scheduled task handle, or None when the host has no memory
            API or no scheduler is configured.
        """
        if self._memory_task is not None and not self._memory_task.cancelled:
            return self._memory_task
        self._memory_probe = probe_memory(self.host)
        if self._memory_probe is None:
            return None
        if self.scheduler is None:
            logger.info("No scheduler configured; memory monitoring disabled")
            return None
        self._memory_task = self.scheduler.call_every(
            self.config.memory_sample_interval_ms, self.sample_memory
        )
        return self._memory_task

    def sample_memory(self) -> MemorySample | None:
        """Take one memory sample and check the series for drift."""
        try:
            if self._memory_probe is None:
                self._memory_probe = probe_memory(self.host)
            ratio = read_memory_ratio(self._memory_probe)
            if ratio is None:
                return None
            sample = MemorySample(timestamp=self._clock.now(), used_ratio=ratio)
            self._memory.push(sample)
            result = self.trend_detector.evaluate(self._memory.snapshot())
            if result.drifting:
                self.alerts.evaluate(
                    AlertObservation(
                        type=AlertType.MEMORY_LEAK,
                        message=(
                            f"Potential memory leak detected: "
                            f"{(result.recent_mean or 0.0) * 100:.1f}% usage"
                        ),
                        payload={
                            "current_usage": result.recent_mean,
                            "previous_usage": result.older_mean,
                            "delta_threshold": self.trend_detector.delta_threshold,
                            "absolute_threshold": self.trend_detector.absolute_threshold,
                            "source": "client",
                        },
                    )
                )
            return sample
        except Exception:
            log_exception("Failed to sample client memory")
            return None

    # === Reads ===

    def renders(self) -> tuple[RenderMetric, ...]:
        return self._renders.snapshot()

    def interactions(self) -> tuple[InteractionMetric, ...]:
        return self._interactions.snapshot()

    def network_requests(self) -> tuple[NetworkMetric, ...]:
        return self._network.snapshot()

    def memory_samples(self) -> tuple[MemorySample, ...]:
        return self._memory.snapshot()

    def stats(self) -> dict[str, Any]:
        """Summary statistics over the retained client series."""
        render_times = [r.duration_ms for r in self._renders.snapshot()]
        delays = [i.delay_ms for i in self._interactions.snapshot()]
        network = self._network.snapshot()
        slow_rate = (
            self._slow_renders / self._total_renders * 100 if self._total_renders else 0.0
        )
        vitals = {kind.value: None for kind in VitalKind}
        for kind, vital in self._vitals.items():
            vitals[kind.value] = round(vital.value, 4)
        result: dict[str, Any] = {
            "render": {
                "avg_ms": round(_mean(render_times), 2),
                "p95_ms": round(_p95(render_times), 2),
                "slow_rate": round(slow_rate, 2),
                "total": self._total_renders,
                "slow": self._slow_renders,
            },
            "interaction": {
                "avg_delay_ms": round(_mean(delays), 2),
                "total": len(delays),
            },
            "network": {
                "avg_duration_ms": round(_mean([n.duration_ms for n in network])),
                "total": len(network),
                "total_transfer": format_bytes(sum(n.size_bytes for n in network)),
            },
            "web_vitals": vitals,
        }
        samples = self._memory.snapshot()
        if samples:
            ratios = [s.used_ratio for s in samples]
            result["memory"] = {
                "current_percent": round(ratios[-1] * 100),
                "avg_percent": round(_mean(ratios) * 100),
                "trend": memory_direction(samples),
            }
        return result

    # === Lifecycle ===

    def reset(self) -> None:
        """Forget every sample. Subscriptions stay active."""
        self._renders.clear()
        self._interactions.clear()
        self._network.clear()
        self._memory.clear()
        self._vitals.clear()
        self._cls_total = 0.0
        self._render_start = None
        self._total_renders = 0
        self._slow_renders = 0

    def dispose(self) -> None:
        """Stop the web-vitals subscription and memory timer. Idempotent."""
        if self._vitals_subscription is not None:
            self._vitals_subscription.cancel()
            self._vitals_subscription = None
        if self._memory_task is not None:
            self._memory_task.cancel()
            self._memory_task = None

    def __enter__(self) -> "ClientMetricsCollector":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()
