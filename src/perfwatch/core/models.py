"""Core domain models for performance metrics and alerts.

All timestamps are Unix epoch milliseconds. Durations are milliseconds.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

MAX_FINGERPRINT_LENGTH = 200


class AlertType(str, Enum):
    """Kinds of alerts raised by the alert engine."""

    SLOW_RENDER = "slow_render"
    SLOW_INTERACTION = "slow_interaction"
    LARGE_PAYLOAD = "large_payload"
    MEMORY_LEAK = "memory_leak"
    SLOW_REQUEST = "slow_request"
    ERROR_RATE = "error_rate"
    SLOW_QUERY = "slow_query"
    HIGH_MEMORY = "high_memory"


class VitalKind(str, Enum):
    """Browser rendering-quality signals."""

    LCP = "lcp"
    FID = "fid"
    CLS = "cls"


@dataclass(frozen=True)
class RequestMetric:
    """A completed server request.

    Attributes:
        endpoint: Method and path, e.g. "GET /contacts".
        duration_ms: Time between request start and end.
        status_code: HTTP status code of the response.
        timestamp: When the request started.
    """

    endpoint: str
    duration_ms: float
    status_code: int
    timestamp: float

    @property
    def is_error(self) -> bool:
        return self.status_code >= 400


@dataclass(frozen=True)
class QueryMetric:
    """A data-access operation.

    Attributes:
        fingerprint: Normalized query shape, never literal parameter values.
        duration_ms: Execution time.
        error: Whether the operation failed.
        timestamp: When the query was recorded.
        row_count: Rows returned or affected, when known.
        meta: Additional caller-supplied context.
    """

    fingerprint: str
    duration_ms: float
    error: bool
    timestamp: float
    row_count: int | None = None
    meta: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MemorySample:
    """Heap usage ratio of a process or browser tab at a point in time."""

    timestamp: float
    used_ratio: float


@dataclass(frozen=True)
class RenderMetric:
    component_name: str
    duration_ms: float
    timestamp: float


@dataclass(frozen=True)
class InteractionMetric:
    name: str
    delay_ms: float
    timestamp: float


@dataclass(frozen=True)
class NetworkMetric:
    url: str
    method: str
    duration_ms: float
    size_bytes: int
    status: int
    timestamp: float


@dataclass(frozen=True)
class WebVital:
    """Latest observed value of a browser vital."""

    kind: VitalKind
    value: float
    timestamp: float


@dataclass(frozen=True)
class Alert:
    """An emitted alert.

    Attributes:
        type: The alert kind.
        message: Human readable summary.
        timestamp: Emission time.
        payload: Value, threshold and source identifier of the observation.
    """

    type: AlertType
    message: str
    timestamp: float
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "timestamp": self.timestamp,
            "data": dict(self.payload),
        }


@dataclass(frozen=True)
class HeapInfo:
    """Memory figures reported by a host environment."""

    used_bytes: int
    total_bytes: int

    @property
    def ratio(self) -> float:
        if self.total_bytes <= 0:
            return 0.0
        return self.used_bytes / self.total_bytes


@dataclass(frozen=True)
class PerformanceEntry:
    """Host-neutral shape of a browser performance entry.

    Attributes:
        entry_type: e.g. "largest-contentful-paint", "first-input", "layout-shift".
        start_time: Entry start time relative to page navigation.
        value: Layout-shift score (layout-shift entries only).
        processing_start: When event handling began (first-input entries only).
        had_recent_input: Whether a layout shift followed user input.
    """

    entry_type: str
    start_time: float = 0.0
    value: float = 0.0
    processing_start: float = 0.0
    had_recent_input: bool = False


@dataclass
class EndpointStats:
    """Running aggregate for one endpoint."""

    count: int = 0
    total_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    min_duration_ms: float = float("inf")

    @property
    def avg_duration_ms(self) -> float:
        if self.count == 0:
            return 0.0
        return self.total_duration_ms / self.count

    def record(self, duration_ms: float) -> None:
        self.count += 1
        self.total_duration_ms += duration_ms
        self.max_duration_ms = max(self.max_duration_ms, duration_ms)
        self.min_duration_ms = min(self.min_duration_ms, duration_ms)


@dataclass(frozen=True)
class ServerAggregates:
    """Cumulative server counters consumed by the health scorer.

    Attributes:
        memory_ratio: Current heap usage ratio, or None when the memory
            API is unavailable.
    """

    total_requests: int = 0
    slow_requests: int = 0
    error_requests: int = 0
    total_queries: int = 0
    slow_queries: int = 0
    memory_ratio: float | None = None

    @property
    def error_rate(self) -> float:
        return _rate(self.error_requests, self.total_requests)

    @property
    def slow_request_rate(self) -> float:
        return _rate(self.slow_requests, self.total_requests)

    @property
    def slow_query_rate(self) -> float:
        return _rate(self.slow_queries, self.total_queries)


def _rate(part: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return part / total


def truncate_fingerprint(fingerprint: str) -> str:
    """Shorten long query fingerprints for storage and reporting."""
    if len(fingerprint) > MAX_FINGERPRINT_LENGTH:
        return fingerprint[:MAX_FINGERPRINT_LENGTH] + "..."
    return fingerprint
