"""Tests for ServerMetricsCollector."""

import logging
import math

import pytest

from perfwatch.core.alerts import AlertEngine
from perfwatch.core.clock import ManualClock
from perfwatch.core.config import PerformanceConfig
from perfwatch.core.models import AlertType
from perfwatch.core.server import ServerMetricsCollector, clean_duration


@pytest.mark.core
class TestCleanDuration:
    @pytest.mark.parametrize(
        "value,expected",
        [(12.5, 12.5), (0, 0.0), (-3, 0.0), (7, 7.0)],
    )
    def test_valid_values(self, value: float, expected: float) -> None:
        assert clean_duration(value) == expected

    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf, "12", None, True])
    def test_invalid_values(self, value: object) -> None:
        assert clean_duration(value) is None


@pytest.mark.core
class TestRequests:
    def test_records_request_with_duration(self, server: ServerMetricsCollector, record_request) -> None:
        metric = record_request("GET /contacts", 200, duration_ms=42)

        assert metric is not None
        assert metric.duration_ms == 42
        assert metric.endpoint == "GET /contacts"
        assert server.requests() == (metric,)
        assert server.request_totals()["total"] == 1

    def test_slow_request_raises_alert_once_per_endpoint(
        self, server: ServerMetricsCollector, record_request
    ) -> None:
        record_request("GET /report", 200, duration_ms=2500)
        record_request("GET /report", 200, duration_ms=2600)
        record_request("GET /export", 200, duration_ms=2100)

        slow_alerts = [a for a in server.alerts.alerts() if a.type is AlertType.SLOW_REQUEST]
        assert [a.payload["endpoint"] for a in slow_alerts] == ["GET /report", "GET /export"]
        assert server.aggregates().slow_requests == 3

    def test_threshold_is_exclusive(self, server: ServerMetricsCollector, record_request) -> None:
        record_request(duration_ms=2000)
        assert server.aggregates().slow_requests == 0
        assert server.alerts.alerts() == ()

    def test_burst_of_slow_requests_raises_rate_alert(
        self, server: ServerMetricsCollector, record_request
    ) -> None:
        for i in range(6):
            record_request(f"GET /slow/{i}", 200, duration_ms=2100)

        rate_alerts = [a for a in server.alerts.alerts() if "count" in a.payload]
        assert len(rate_alerts) == 1
        assert rate_alerts[0].payload["count"] == 6

    def test_errors_counted_from_status_400(
        self, server: ServerMetricsCollector, record_request
    ) -> None:
        record_request(status=200)
        record_request(status=404)
        record_request(status=503)

        aggregates = server.aggregates()
        assert aggregates.total_requests == 3
        assert aggregates.error_requests == 2

    def test_error_rate_alert_needs_more_than_ten_requests(
        self, server: ServerMetricsCollector, record_request
    ) -> None:
        for _ in range(5):
            record_request(status=500)

        assert server.alerts.alerts() == ()

    def test_error_rate_alert(self, server: ServerMetricsCollector, record_request) -> None:
        for _ in range(10):
            record_request(status=200)
        record_request(status=500)
        assert server.alerts.alerts() == ()

        record_request(status=500)

        (alert,) = server.alerts.alerts()
        assert alert.type is AlertType.ERROR_RATE
        assert alert.payload["total_requests"] == 12
        assert alert.payload["error_rate"] == pytest.approx(2 / 12)

    def test_recording_fault_is_logged_not_raised(
        self, server: ServerMetricsCollector, caplog: pytest.LogCaptureFixture
    ) -> None:
        token = server.on_request_start()
        with caplog.at_level(logging.ERROR, logger="perfwatch"):
            result = server.on_request_end(token, "GET /x", "not-a-status")  # type: ignore[arg-type]

        assert result is None
        assert "Failed to record request metric" in caplog.text
        assert server.requests() == ()

    def test_request_log_levels(
        self, record_request, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.DEBUG, logger="perfwatch"):
            record_request("GET /ok", 200)
            record_request("GET /missing", 404)
            record_request("GET /broken", 500)

        levels = {r.perf_endpoint: r.levelno for r in caplog.records if hasattr(r, "perf_endpoint")}
        assert levels == {
            "GET /ok": logging.DEBUG,
            "GET /missing": logging.WARNING,
            "GET /broken": logging.ERROR,
        }

    def test_capacity_bounds_retained_requests(
        self, alert_engine: AlertEngine, clock: ManualClock
    ) -> None:
        collector = ServerMetricsCollector(
            PerformanceConfig(request_capacity=3), alert_engine, clock
        )
        for _ in range(5):
            collector.on_request_end(collector.on_request_start(), "GET /", 200)

        assert len(collector.requests()) == 3
        assert collector.aggregates().total_requests == 5

    def test_top_endpoints_by_count(self, server: ServerMetricsCollector, record_request) -> None:
        for _ in range(3):
            record_request("GET /a", duration_ms=10)
        record_request("GET /b", duration_ms=30)
        record_request("GET /a", duration_ms=40)

        top = server.top_endpoints()

        assert [name for name, _ in top] == ["GET /a", "GET /b"]
        stats = top[0][1]
        assert stats.count == 4
        assert stats.max_duration_ms == 40
        assert stats.min_duration_ms == 10
        assert stats.avg_duration_ms == pytest.approx(17.5)
        assert server.top_endpoints(limit=1) == top[:1]


@pytest.mark.core
class TestQueries:
    def test_track_query(self, server: ServerMetricsCollector) -> None:
        metric = server.track_query(
            "SELECT * FROM contacts WHERE id = ?", 12, meta={"row_count": 1, "table": "contacts"}
        )

        assert metric is not None
        assert metric.row_count == 1
        assert metric.meta == {"table": "contacts"}
        assert metric.error is False
        assert server.query_totals()["total"] == 1

    def test_slow_query_alert_keyed_by_fingerprint(self, server: ServerMetricsCollector) -> None:
        server.track_query("SELECT a", 1500)
        server.track_query("SELECT a", 1600)
        server.track_query("SELECT b", 1200)

        alerts = [a for a in server.alerts.alerts() if a.type is AlertType.SLOW_QUERY]
        assert [a.payload["query"] for a in alerts] == ["SELECT a", "SELECT b"]
        assert alerts[0].payload["threshold_ms"] == 1000

    def test_invalid_duration_is_discarded(self, server: ServerMetricsCollector) -> None:
        assert server.track_query("SELECT 1", math.nan) is None
        assert server.queries() == ()

    def test_long_fingerprint_is_truncated(self, server: ServerMetricsCollector) -> None:
        metric = server.track_query("x" * 500, 5)

        assert metric is not None
        assert metric.fingerprint == "x" * 200 + "..."

    def test_failed_query_logged(
        self, server: ServerMetricsCollector, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.ERROR, logger="perfwatch"):
            metric = server.track_query("SELECT 1", 3, error=RuntimeError("connection reset"))

        assert metric is not None and metric.error
        assert server.query_totals()["errors"] == 1
        assert "Database query error" in caplog.text

    def test_track_query_timing(self, server: ServerMetricsCollector, clock: ManualClock) -> None:
        with server.track_query_timing("SELECT 1"):
            clock.advance(25)

        (metric,) = server.queries()
        assert metric.duration_ms == 25
        assert not metric.error

    def test_track_query_timing_reraises(
        self, server: ServerMetricsCollector, clock: ManualClock
    ) -> None:
        with pytest.raises(KeyError):
            with server.track_query_timing("SELECT 1"):
                clock.advance(5)
                raise KeyError("missing")

        (metric,) = server.queries()
        assert metric.error


@pytest.mark.core
class TestMemory:
    def test_sample_memory(self, server: ServerMetricsCollector, memory_probe) -> None:
        memory_probe.set_ratio(0.5)

        sample = server.sample_memory()

        assert sample is not None
        assert sample.used_ratio == pytest.approx(0.5)
        assert server.alerts.alerts() == ()

    def test_high_memory_alert(self, server: ServerMetricsCollector, memory_probe) -> None:
        memory_probe.set_ratio(0.95)

        server.sample_memory()

        (alert,) = server.alerts.alerts()
        assert alert.type is AlertType.HIGH_MEMORY
        assert alert.payload["usage_ratio"] == pytest.approx(0.95)

    def test_missing_probe_yields_no_sample(
        self, alert_engine: AlertEngine, clock: ManualClock
    ) -> None:
        collector = ServerMetricsCollector(PerformanceConfig(), alert_engine, clock, None)
        assert collector.sample_memory() is None

    def test_failing_probe_yields_no_sample(
        self, server: ServerMetricsCollector, memory_probe
    ) -> None:
        memory_probe.fail = True
        assert server.sample_memory() is None
        assert server.memory_samples() == ()

    def test_memory_trend_needs_two_windows(
        self, server: ServerMetricsCollector, memory_probe
    ) -> None:
        memory_probe.set_ratio(0.2)
        for _ in range(5):
            server.sample_memory()
        memory_probe.set_ratio(0.6)
        for _ in range(4):
            server.sample_memory()

        assert server.memory_trend() == "stable"

        server.sample_memory()

        assert server.memory_trend() == "increasing"

    def test_memory_trend_decreasing(self, server: ServerMetricsCollector, memory_probe) -> None:
        for ratio in (0.7, 0.3):
            memory_probe.set_ratio(ratio)
            for _ in range(5):
                server.sample_memory()

        assert server.memory_trend() == "decreasing"

    def test_memory_drift_raises_leak_alert(
        self, server: ServerMetricsCollector, memory_probe
    ) -> None:
        for ratio in (0.7, 0.86):
            memory_probe.set_ratio(ratio)
            for _ in range(10):
                server.sample_memory()

        (alert,) = server.alerts.alerts()
        assert alert.type is AlertType.MEMORY_LEAK
        assert alert.payload["source"] == "server"
        assert alert.payload["current_usage"] == pytest.approx(0.86)
        assert alert.payload["previous_usage"] == pytest.approx(0.7)

    def test_flat_high_usage_is_not_drift(
        self, server: ServerMetricsCollector, memory_probe
    ) -> None:
        memory_probe.set_ratio(0.85)
        for _ in range(20):
            server.sample_memory()

        assert server.alerts.alerts() == ()


@pytest.mark.core
class TestMaintenance:
    def test_sweep_evicts_samples_past_retention(
        self, server: ServerMetricsCollector, record_request, clock: ManualClock
    ) -> None:
        record_request("GET /old")
        server.track_query("SELECT old", 1)
        clock.advance(86_400_000)
        record_request("GET /new")

        removed = server.sweep()

        assert removed == 2
        assert [r.endpoint for r in server.requests()] == ["GET /new"]
        assert server.aggregates().total_requests == 2

    def test_reset(self, server: ServerMetricsCollector, record_request, clock: ManualClock) -> None:
        record_request()
        server.track_query("SELECT 1", 1)
        clock.advance(100)

        server.reset()

        assert server.requests() == ()
        assert server.queries() == ()
        assert server.aggregates().total_requests == 0
        assert server.top_endpoints() == []
        assert server.started_at == clock.now()
