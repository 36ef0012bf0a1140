"""Server-side request and query instrumentation.

Recording never raises into the request path: faults while recording are
logged and the observation is dropped.
"""

import logging
import math
import threading
from collections.abc import Generator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from perfwatch.core.alerts import AlertEngine, AlertObservation
from perfwatch.core.capabilities import read_memory_ratio
from perfwatch.core.clock import SystemClock
from perfwatch.core.config import PerformanceConfig
from perfwatch.core.logs import log_event, log_exception
from perfwatch.core.models import (
    AlertType,
    EndpointStats,
    MemorySample,
    QueryMetric,
    RequestMetric,
    ServerAggregates,
    truncate_fingerprint,
)
from perfwatch.core.ports import ClockPort, MemoryProbePort
from perfwatch.core.retention import RingBuffer
from perfwatch.core.trend import TrendDetector, memory_direction

logger = logging.getLogger(__name__)

SLOW_RATE_WINDOW_MS = 60_000
SLOW_RATE_LIMIT = 5
ERROR_RATE_WINDOW_MS = 300_000
ERROR_RATE_LIMIT = 0.1
ERROR_RATE_MIN_REQUESTS = 10
TOP_ENDPOINT_LIMIT = 10


@dataclass(frozen=True)
class RequestToken:
    """Opaque start marker returned by on_request_start."""

    started_at: float
    perf_start: float


def clean_duration(value: Any) -> float | None:
    """Validate an observed duration.

    Returns:
        The duration clamped at 0, or None for non-numeric, NaN or
        infinite values.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return max(0.0, float(value))


def _log_level_for(metric: RequestMetric, slow: bool) -> int:
    if slow:
        return logging.WARNING
    if metric.status_code >= 500:
        return logging.ERROR
    if metric.status_code >= 400:
        return logging.WARNING
    return logging.DEBUG


class ServerMetricsCollector:
    """Collects request, query and process memory metrics.

    Args:
        config: Thresholds and retention settings.
        alerts: Alert engine receiving slow/error observations.
        clock: Source of time (default: system clock).
        memory_probe: Process memory probe, or None when unavailable.
        trend_detector: Memory drift detector.
    """

    def __init__(
        self,
        config: PerformanceConfig | None = None,
        alerts: AlertEngine | None = None,
        clock: ClockPort | None = None,
        memory_probe: MemoryProbePort | None = None,
        trend_detector: TrendDetector | None = None,
    ) -> None:
        self.config = config or PerformanceConfig()
        self._clock = clock or SystemClock()
        self.alerts = alerts or AlertEngine(
            self.config.alert_cooldown_ms, self.config.metrics_retention_ms, self._clock
        )
        self.memory_probe = memory_probe
        self.trend_detector = trend_detector or TrendDetector()
        self._requests: RingBuffer[RequestMetric] = RingBuffer(self.config.request_capacity)
        self._queries: RingBuffer[QueryMetric] = RingBuffer(self.config.query_capacity)
        self._memory: RingBuffer[MemorySample] = RingBuffer(self.config.memory_capacity)
        self._lock = threading.Lock()
        self._reset_counters()

    def _reset_counters(self) -> None:
        self.started_at = self._clock.now()
        self._total_requests = 0
        self._total_request_ms = 0.0
        self._slow_requests = 0
        self._error_requests = 0
        self._total_queries = 0
        self._total_query_ms = 0.0
        self._slow_queries = 0
        self._failed_queries = 0
        self._endpoints: dict[str, EndpointStats] = {}

    # === Requests ===

    def on_request_start(self) -> RequestToken:
        """Mark the start of a request."""
        return RequestToken(started_at=self._clock.now(), perf_start=self._clock.perf())

    def on_request_end(
        self, token: RequestToken, endpoint: str, status_code: int
    ) -> RequestMetric | None:
        """Record a finished request.

        Args:
            token: Marker returned by on_request_start.
            endpoint: Method and path, e.g. "GET /contacts/:id".
            status_code: HTTP status code of the response.

        Returns:
            The recorded metric, or None if recording failed.
        """
        try:
            return self._record_request(token, endpoint, status_code)
        except Exception:
            log_exception("Failed to record request metric", endpoint=str(endpoint))
            return None

    def _record_request(
        self, token: RequestToken, endpoint: str, status_code: int
    ) -> RequestMetric | None:
        duration = clean_duration(self._clock.perf() - token.perf_start)
        if duration is None:
            logger.debug("Discarding request with invalid duration: %s", endpoint)
            return None
        metric = RequestMetric(
            endpoint=endpoint,
            duration_ms=duration,
            status_code=int(status_code),
            timestamp=token.started_at,
        )
        slow = duration > self.config.slow_request_threshold_ms
        with self._lock:
            self._total_requests += 1
            self._total_request_ms += duration
            if slow:
                self._slow_requests += 1
            if metric.is_error:
                self._error_requests += 1
            self._endpoints.setdefault(endpoint, EndpointStats()).record(duration)
        self._requests.push(metric)
        log_event(
            _log_level_for(metric, slow),
            f"{endpoint} {metric.status_code} {duration:.0f}ms",
            endpoint=endpoint,
            status_code=metric.status_code,
            duration_ms=duration,
        )
        if slow:
            self._check_slow_request(metric)
        if metric.is_error:
            self._check_error_rate()
        return metric

    def _check_slow_request(self, metric: RequestMetric) -> None:
        threshold = self.config.slow_request_threshold_ms
        self.alerts.evaluate(
            AlertObservation(
                type=AlertType.SLOW_REQUEST,
                message=f"Slow request: {metric.endpoint} took {metric.duration_ms:.0f}ms",
                payload={
                    "endpoint": metric.endpoint,
                    "duration_ms": metric.duration_ms,
                    "threshold_ms": threshold,
                    "status_code": metric.status_code,
                },
                key=metric.endpoint,
            )
        )
        cutoff = self._clock.now() - SLOW_RATE_WINDOW_MS
        recent_slow = [
            r
            for r in self._requests.snapshot()
            if r.timestamp > cutoff and r.duration_ms > threshold
        ]
        if len(recent_slow) > SLOW_RATE_LIMIT:
            self.alerts.evaluate(
                AlertObservation(
                    type=AlertType.SLOW_REQUEST,
                    message=f"{len(recent_slow)} slow requests in the last minute",
                    payload={
                        "count": len(recent_slow),
                        "window_ms": SLOW_RATE_WINDOW_MS,
                        "threshold_ms": threshold,
                    },
                    key="rate",
                )
            )

    def _check_error_rate(self) -> None:
        cutoff = self._clock.now() - ERROR_RATE_WINDOW_MS
        recent = [r for r in self._requests.snapshot() if r.timestamp > cutoff]
        if len(recent) <= ERROR_RATE_MIN_REQUESTS:
            return
        errors = sum(1 for r in recent if r.is_error)
        rate = errors / len(recent)
        if rate > ERROR_RATE_LIMIT:
            self.alerts.evaluate(
                AlertObservation(
                    type=AlertType.ERROR_RATE,
                    message=f"High error rate: {rate * 100:.2f}% over {len(recent)} requests",
                    payload={
                        "error_rate": rate,
                        "threshold": ERROR_RATE_LIMIT,
                        "total_requests": len(recent),
                        "window_ms": ERROR_RATE_WINDOW_MS,
                    },
                )
            )

    # === Queries ===

    def track_query(
        self,
        fingerprint: str,
        duration_ms: float,
        error: BaseException | str | bool | None = None,
        meta: Mapping[str, Any] | None = None,
    ) -> QueryMetric | None:
        """Record a data-access operation.

        Args:
            fingerprint: Normalized query shape (no literal values).
            duration_ms: Execution time.
            error: Failure of the operation, if any.
            meta: Extra context; a "row_count" entry is lifted onto the metric.

        Returns:
            The recorded metric, or None if it was discarded.
        """
        try:
            return self._record_query(fingerprint, duration_ms, error, meta)
        except Exception:
            log_exception("Failed to record query metric")
            return None

    def _record_query(
        self,
        fingerprint: str,
        duration_ms: float,
        error: BaseException | str | bool | None,
        meta: Mapping[str, Any] | None,
    ) -> QueryMetric | None:
        duration = clean_duration(duration_ms)
        if duration is None:
            logger.debug("Discarding query with invalid duration: %r", duration_ms)
            return None
        extra = dict(meta or {})
        row_count = extra.pop("row_count", None)
        metric = QueryMetric(
            fingerprint=truncate_fingerprint(str(fingerprint)),
            duration_ms=duration,
            error=bool(error),
            timestamp=self._clock.now(),
            row_count=row_count if isinstance(row_count, int) else None,
            meta=extra,
        )
        threshold = self.config.slow_query_threshold_ms
        slow = duration > threshold
        with self._lock:
            self._total_queries += 1
            self._total_query_ms += duration
            if slow:
                self._slow_queries += 1
            if metric.error:
                self._failed_queries += 1
        self._queries.push(metric)
        if metric.error:
            log_event(
                logging.ERROR,
                "Database query error",
                query=metric.fingerprint,
                error=error if isinstance(error, str) else repr(error),
                duration_ms=duration,
            )
        if slow:
            self.alerts.evaluate(
                AlertObservation(
                    type=AlertType.SLOW_QUERY,
                    message=f"Slow query took {duration:.0f}ms",
                    payload={
                        "query": metric.fingerprint,
                        "duration_ms": duration,
                        "threshold_ms": threshold,
                    },
                    key=metric.fingerprint,
                )
            )
        return metric

    @contextmanager
    def track_query_timing(
        self, fingerprint: str, meta: Mapping[str, Any] | None = None
    ) -> Generator[None]:
        """Context manager timing a data-access block.

        The block is recorded as failed when it raises; the exception is
        re-raised unchanged.
        """
        start = self._clock.perf()
        try:
            yield
        except BaseException as e:
            self.track_query(fingerprint, self._clock.perf() - start, error=e, meta=meta)
            raise
        self.track_query(fingerprint, self._clock.perf() - start, meta=meta)

    # === Memory ===

    def sample_memory(self) -> MemorySample | None:
        """Record the process memory usage and check it for high usage and drift."""
        try:
            ratio = read_memory_ratio(self.memory_probe)
            if ratio is None:
                return None
            sample = MemorySample(timestamp=self._clock.now(), used_ratio=ratio)
            self._memory.push(sample)
            if ratio > self.config.memory_alert_ratio:
                self.alerts.evaluate(
                    AlertObservation(
                        type=AlertType.HIGH_MEMORY,
                        message=f"High memory usage: {ratio * 100:.2f}%",
                        payload={
                            "usage_ratio": ratio,
                            "threshold": self.config.memory_alert_ratio,
                            "source": "server",
                        },
                    )
                )
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
                            "source": "server",
                        },
                    )
                )
            return sample
        except Exception:
            log_exception("Failed to sample process memory")
            return None

    # === Reads ===

    def requests(self) -> tuple[RequestMetric, ...]:
        return self._requests.snapshot()

    def queries(self) -> tuple[QueryMetric, ...]:
        return self._queries.snapshot()

    def memory_samples(self) -> tuple[MemorySample, ...]:
        return self._memory.snapshot()

    def memory_trend(self) -> str:
        """Direction of recent process memory usage."""
        return memory_direction(self._memory.snapshot())

    def aggregates(self, memory_ratio: float | None = None) -> ServerAggregates:
        """Cumulative counters since start or the last reset."""
        with self._lock:
            return ServerAggregates(
                total_requests=self._total_requests,
                slow_requests=self._slow_requests,
                error_requests=self._error_requests,
                total_queries=self._total_queries,
                slow_queries=self._slow_queries,
                memory_ratio=memory_ratio,
            )

    def request_totals(self) -> dict[str, float]:
        with self._lock:
            return {
                "total": self._total_requests,
                "total_duration_ms": self._total_request_ms,
                "slow": self._slow_requests,
                "errors": self._error_requests,
            }

    def query_totals(self) -> dict[str, float]:
        with self._lock:
            return {
                "total": self._total_queries,
                "total_duration_ms": self._total_query_ms,
                "slow": self._slow_queries,
                "errors": self._failed_queries,
            }

    def top_endpoints(self, limit: int = TOP_ENDPOINT_LIMIT) -> list[tuple[str, EndpointStats]]:
        """Endpoints ordered by call count, most called first."""
        with self._lock:
            items = [
                (endpoint, EndpointStats(s.count, s.total_duration_ms, s.max_duration_ms, s.min_duration_ms))
                for endpoint, s in self._endpoints.items()
            ]
        items.sort(key=lambda item: item[1].count, reverse=True)
        return items[:limit]

    # === Maintenance ===

    def sweep(self, now: float | None = None) -> int:
        """Drop retained samples older than the retention window."""
        reference = self._clock.now() if now is None else now
        cutoff = reference - self.config.metrics_retention_ms
        removed = self._requests.evict_older_than(cutoff, key=lambda r: r.timestamp)
        removed += self._queries.evict_older_than(cutoff, key=lambda q: q.timestamp)
        removed += self._memory.evict_older_than(cutoff, key=lambda m: m.timestamp)
        return removed

    def reset(self) -> None:
        """Forget every sample and counter."""
        with self._lock:
            self._reset_counters()
        self._requests.clear()
        self._queries.clear()
        self._memory.clear()
        logger.info("Server performance metrics reset")
