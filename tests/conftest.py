"""Shared test fixtures for all test modules."""

from collections.abc import Iterator

import httpx
import pytest

from perfwatch.adapters.hosts import BeaconHost
from perfwatch.core.alerts import AlertEngine
from perfwatch.core.client import ClientMetricsCollector
from perfwatch.core.clock import ManualClock
from perfwatch.core.config import PerformanceConfig
from perfwatch.core.models import HeapInfo
from perfwatch.core.scheduling import ManualScheduler
from perfwatch.core.server import ServerMetricsCollector
from perfwatch.monitor import PerformanceMonitor


class FakeMemoryProbe:
    """Memory probe whose reading is set by the test."""

    def __init__(self, used: int = 400, total: int = 1000) -> None:
        self.info: HeapInfo | None = HeapInfo(used_bytes=used, total_bytes=total)
        self.fail = False

    def set_ratio(self, ratio: float, total: int = 1000) -> None:
        self.info = HeapInfo(used_bytes=int(round(ratio * total)), total_bytes=total)

    def read(self) -> HeapInfo | None:
        if self.fail:
            raise RuntimeError("memory API exploded")
        return self.info


class BareHost:
    """Client host without any optional capability."""

    def memory_probe(self) -> None:
        return None

    def entry_source(self) -> None:
        return None


@pytest.fixture
def clock() -> ManualClock:
    """Deterministic clock shared by every component under test."""
    return ManualClock()


@pytest.fixture
def scheduler(clock: ManualClock) -> ManualScheduler:
    return ManualScheduler(clock)


@pytest.fixture
def config() -> PerformanceConfig:
    return PerformanceConfig()


@pytest.fixture
def alert_engine(config: PerformanceConfig, clock: ManualClock) -> AlertEngine:
    return AlertEngine(config.alert_cooldown_ms, config.metrics_retention_ms, clock)


@pytest.fixture
def memory_probe() -> FakeMemoryProbe:
    return FakeMemoryProbe()


@pytest.fixture
def server(
    config: PerformanceConfig,
    alert_engine: AlertEngine,
    clock: ManualClock,
    memory_probe: FakeMemoryProbe,
) -> ServerMetricsCollector:
    return ServerMetricsCollector(config, alert_engine, clock, memory_probe)


@pytest.fixture
def beacon_host() -> BeaconHost:
    return BeaconHost()


@pytest.fixture
def bare_host() -> BareHost:
    return BareHost()


@pytest.fixture
def client(
    config: PerformanceConfig,
    alert_engine: AlertEngine,
    clock: ManualClock,
    beacon_host: BeaconHost,
    scheduler: ManualScheduler,
) -> Iterator[ClientMetricsCollector]:
    collector = ClientMetricsCollector(
        config, alert_engine, clock, beacon_host, scheduler, component_name="ScheduleGrid"
    )
    yield collector
    collector.dispose()


@pytest.fixture
def monitor(clock: ManualClock, memory_probe: FakeMemoryProbe) -> PerformanceMonitor:
    """Monitor with a fake process memory probe and no client collector."""
    return PerformanceMonitor(clock=clock, memory_probe=memory_probe)


@pytest.fixture
def record_request(server: ServerMetricsCollector, clock: ManualClock):
    """Factory recording a request that takes ``duration_ms`` on the manual clock."""

    def _record(endpoint: str = "GET /contacts", status: int = 200, duration_ms: float = 10):
        token = server.on_request_start()
        clock.advance(duration_ms)
        return server.on_request_end(token, endpoint, status)

    return _record


# === ASGI Test Fixtures ===


@pytest.fixture
def basic_asgi_app():
    """Basic ASGI app fixture that returns 200 OK."""
    from perfwatch.adapters.frameworks.asgi import Receive, Scope, Send

    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        """Simple ASGI app that returns 200 OK."""
        await send({"type": "http.response.start", "status": 200, "headers": []})
        await send({"type": "http.response.body", "body": b"OK"})

    return app


@pytest.fixture
def asgi_scope():
    """Factory fixture for creating ASGI scope dicts."""
    from perfwatch.adapters.frameworks.asgi import Scope

    def _scope(method: str = "GET", path: str = "/test", query_string: bytes = b"") -> Scope:
        return {
            "type": "http",
            "method": method,
            "path": path,
            "query_string": query_string,
            "headers": [],
        }

    return _scope


@pytest.fixture
def asgi_send_capture():
    """Fixture that returns a send callable and a responses list for capture."""

    responses: list[dict[str, object]] = []

    async def send(message: dict[str, object]) -> None:
        """Capture ASGI messages."""
        responses.append(message)

    return send, responses


@pytest.fixture
def asgi_test_client():
    """Factory fixture that creates an httpx.AsyncClient for ASGI testing.

    Usage:
        async def test_something(asgi_test_client):
            app = create_asgi_app(monitor)
            async with asgi_test_client(app) as client:
                response = await client.get("/performance/report")
    """
    def _get_client(app):
        """Return an AsyncClient context manager for the given app."""
        return httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://test"
        )

    return _get_client
