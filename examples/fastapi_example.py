"""Example FastAPI application with performance monitoring.

Run with:
    uvicorn examples.fastapi_example:app --reload

Endpoints:
    /performance/report              - JSON report
    /performance/report?top=5        - report listing the 5 busiest endpoints
    /performance/report?alerts=5     - report listing the 5 newest alerts
    /performance/client              - POST beacon with browser entries

Instrumentation:
    Every request passes through ASGIPerformanceMiddleware. Database work
    is timed with ``track_query_timing`` on the server collector.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from perfwatch import BeaconHost, PerformanceConfig, PerformanceMonitor
from perfwatch.adapters.frameworks.asgi import ASGIPerformanceMiddleware
from perfwatch.adapters.frameworks.fastapi import create_performance_router

logging.basicConfig(level=logging.INFO)

host = BeaconHost()
monitor = PerformanceMonitor(
    config=PerformanceConfig.from_env(),
    host=host,
    component_name="ContactList",
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    monitor.start()
    yield
    monitor.stop()


app = FastAPI(title="Performance Example", lifespan=lifespan)
app.add_middleware(
    ASGIPerformanceMiddleware,
    collector=monitor.server,
    exclude_paths=["/performance/*"],
)
app.include_router(create_performance_router(monitor, host=host))


@app.get("/")
async def root() -> dict[str, str]:
    return {"message": "Hello! Check /performance/report."}


@app.get("/contacts")
async def list_contacts() -> dict[str, list[dict[str, str]]]:
    """Contacts endpoint with a timed (simulated) database query."""
    with monitor.server.track_query_timing("SELECT * FROM contacts LIMIT ?"):
        await asyncio.sleep(0.05)
    return {
        "contacts": [
            {"id": "1", "name": "Alice"},
            {"id": "2", "name": "Bob"},
        ]
    }


@app.get("/slow")
async def slow() -> dict[str, str]:
    """Slower than the default threshold; raises a slow_request alert."""
    await asyncio.sleep(2.1)
    return {"message": "done"}
