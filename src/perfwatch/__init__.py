"""perfwatch: in-process performance observability for servers and browser clients."""

from perfwatch.adapters.hosts import BeaconHost
from perfwatch.core.alerts import AlertEngine, AlertObservation
from perfwatch.core.client import ClientMetricsCollector
from perfwatch.core.clock import ManualClock, SystemClock
from perfwatch.core.config import ConfigError, PerformanceConfig
from perfwatch.core.health import health_score
from perfwatch.core.models import (
    Alert,
    AlertType,
    MemorySample,
    QueryMetric,
    RequestMetric,
    ServerAggregates,
    VitalKind,
    WebVital,
)
from perfwatch.core.report import ReportAggregator
from perfwatch.core.retention import RingBuffer, TimeWindowBuffer
from perfwatch.core.scheduling import AsyncioScheduler, ManualScheduler, ScheduledTask
from perfwatch.core.server import RequestToken, ServerMetricsCollector
from perfwatch.core.trend import TrendDetector, TrendVerdict, detect_drift
from perfwatch.monitor import PerformanceMonitor

__all__ = [
    "Alert",
    "AlertEngine",
    "AlertObservation",
    "AlertType",
    "AsyncioScheduler",
    "BeaconHost",
    "ClientMetricsCollector",
    "ConfigError",
    "ManualClock",
    "ManualScheduler",
    "MemorySample",
    "PerformanceConfig",
    "PerformanceMonitor",
    "QueryMetric",
    "ReportAggregator",
    "RequestMetric",
    "RequestToken",
    "RingBuffer",
    "ScheduledTask",
    "ServerAggregates",
    "ServerMetricsCollector",
    "SystemClock",
    "TimeWindowBuffer",
    "TrendDetector",
    "TrendVerdict",
    "VitalKind",
    "WebVital",
    "detect_drift",
    "health_score",
]
