"""FastAPI adapter for the performance endpoints."""

from typing import Any

from fastapi import APIRouter, Body, HTTPException, Query
from fastapi.responses import JSONResponse

from perfwatch.adapters.frameworks.query_params import MAX_LIMIT
from perfwatch.adapters.hosts import BeaconError, BeaconHost
from perfwatch.monitor import PerformanceMonitor


def create_performance_router(
    monitor: PerformanceMonitor,
    host: BeaconHost | None = None,
) -> APIRouter:
    """Create a FastAPI router with /performance/report and /performance/client.

    Args:
        monitor: The process-wide performance monitor.
        host: Beacon host receiving client entries. The beacon route is
              only registered when a host is given.

    Returns:
        APIRouter with the performance endpoints configured.
    """
    router = APIRouter(prefix="/performance")

    @router.get("/report")
    async def get_report(
        top: int | None = Query(default=None, ge=0, le=MAX_LIMIT),
        alerts: int | None = Query(default=None, ge=0, le=MAX_LIMIT),
    ) -> JSONResponse:
        """Return the current performance report as JSON.

        Args:
            top: Number of endpoints listed (default 10).
            alerts: Number of recent alerts listed (default 20).
        """
        report = monitor.reports.build_report(top_endpoints=top, recent_alerts=alerts)
        return JSONResponse(content=report)

    if host is not None:

        @router.post("/client", status_code=202)
        async def post_beacon(payload: Any = Body(...)) -> dict[str, int]:
            """Accept a beacon of browser performance entries."""
            try:
                return host.ingest(payload)
            except BeaconError as e:
                raise HTTPException(status_code=400, detail=str(e)) from e

    return router
