"""BDD tests for the performance report."""

from dataclasses import dataclass, field
from typing import Any

import pytest
from pytest_bdd import given, parsers, scenarios, then, when

from perfwatch.adapters.hosts import BeaconHost
from perfwatch.core.clock import ManualClock
from perfwatch.core.models import HeapInfo
from perfwatch.core.scheduling import ManualScheduler
from perfwatch.monitor import PerformanceMonitor

scenarios("report.feature")

pytestmark = [pytest.mark.integration]


class _SettableProbe:
    def __init__(self) -> None:
        self.info: HeapInfo | None = HeapInfo(used_bytes=300, total_bytes=1000)

    def read(self) -> HeapInfo | None:
        return self.info


@dataclass
class ReportScenarioContext:
    """State shared between the steps of one scenario."""

    clock: ManualClock = field(default_factory=ManualClock)
    probe: _SettableProbe = field(default_factory=_SettableProbe)
    monitor: PerformanceMonitor | None = None
    host: BeaconHost | None = None
    scheduler: ManualScheduler | None = None

    def report(self) -> dict[str, Any]:
        assert self.monitor is not None
        return self.monitor.report()


@pytest.fixture
def ctx() -> ReportScenarioContext:
    return ReportScenarioContext()


@given("a performance monitor with default thresholds")
def given_monitor(ctx: ReportScenarioContext) -> None:
    ctx.monitor = PerformanceMonitor(clock=ctx.clock, memory_probe=ctx.probe)


@given("the process memory cannot be read")
def given_memory_unreadable(ctx: ReportScenarioContext) -> None:
    ctx.probe.info = None


@given("a page reporting its heap through beacons")
def given_beacon_page(ctx: ReportScenarioContext) -> None:
    ctx.host = BeaconHost()
    ctx.monitor = PerformanceMonitor(clock=ctx.clock, probe_process=False, host=ctx.host)
    ctx.scheduler = ManualScheduler(ctx.clock)
    ctx.monitor.start(ctx.scheduler)


@when(parsers.parse("{total:d} requests are recorded of which {slow:d} are slow and {failed:d} fail"))
def when_requests_recorded(ctx: ReportScenarioContext, total: int, slow: int, failed: int) -> None:
    assert ctx.monitor is not None
    server = ctx.monitor.server
    for i in range(total):
        token = server.on_request_start()
        ctx.clock.advance(2500 if i < slow else 10)
        status = 500 if slow <= i < slow + failed else 200
        server.on_request_end(token, "GET /schedules", status)


@when(
    parsers.parse(
        'the query "{query}" takes {duration:d}ms {times:d} times {gap:d} seconds apart'
    )
)
def when_query_repeated(
    ctx: ReportScenarioContext, query: str, duration: int, times: int, gap: int
) -> None:
    assert ctx.monitor is not None
    for _ in range(times):
        ctx.monitor.server.track_query(query, duration)
        ctx.clock.advance(gap * 1000)


@when(parsers.parse("{seconds:d} seconds pass"))
def when_time_passes(ctx: ReportScenarioContext, seconds: int) -> None:
    ctx.clock.advance(seconds * 1000)


@when(parsers.parse("the page heap grows from {start:d} to {end:d} percent over {n:d} samples"))
def when_heap_grows(ctx: ReportScenarioContext, start: int, end: int, n: int) -> None:
    assert ctx.host is not None and ctx.scheduler is not None and ctx.monitor is not None
    step = (end - start) / (n - 1)
    for i in range(n):
        used = round((start + step * i) * 10_000)
        ctx.host.ingest({"memory": {"usedJSHeapSize": used, "totalJSHeapSize": 1_000_000}})
        ctx.scheduler.advance(ctx.monitor.config.memory_sample_interval_ms)


@then(parsers.parse("the report shows a slow rate of {rate:f} percent"))
def then_slow_rate(ctx: ReportScenarioContext, rate: float) -> None:
    assert ctx.report()["requests"]["slow_rate"] == rate


@then(parsers.parse("the report shows an error rate of {rate:f} percent"))
def then_error_rate(ctx: ReportScenarioContext, rate: float) -> None:
    assert ctx.report()["requests"]["error_rate"] == rate


@then(parsers.parse("the health score is {score:d}"))
def then_health_score(ctx: ReportScenarioContext, score: int) -> None:
    assert ctx.report()["health_score"] == score


@then(parsers.re(r'(?P<count>\d+) "(?P<alert_type>\w+)" alerts? (?:is|are) reported'))
def then_alert_count(ctx: ReportScenarioContext, count: str, alert_type: str) -> None:
    alerts = [a for a in ctx.report()["recent_alerts"] if a["type"] == alert_type]
    assert len(alerts) == int(count)


@then(parsers.parse('the report has no "{section}" section'))
def then_section_missing(ctx: ReportScenarioContext, section: str) -> None:
    assert section not in ctx.report()


@then(parsers.parse('the report has a "{section}" section'))
def then_section_present(ctx: ReportScenarioContext, section: str) -> None:
    assert section in ctx.report()
