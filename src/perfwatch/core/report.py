"""Point-in-time performance report.

Each section is built independently. A section whose subsystem is
unavailable or fails is left out; the rest of the report is still
returned.
"""

from collections.abc import Callable
from typing import Any

from perfwatch.core.alerts import RECENT_ALERT_LIMIT, AlertEngine
from perfwatch.core.capabilities import read_memory_ratio
from perfwatch.core.client import ClientMetricsCollector
from perfwatch.core.clock import SystemClock
from perfwatch.core.health import health_score
from perfwatch.core.logs import log_exception
from perfwatch.core.ports import ClockPort
from perfwatch.core.server import TOP_ENDPOINT_LIMIT, ServerMetricsCollector

_OMIT = object()


def _percent(part: float, total: float) -> float:
    if total <= 0:
        return 0.0
    return round(part / total * 100, 2)


def _avg(total: float, count: float) -> float:
    if count <= 0:
        return 0.0
    return round(total / count, 2)


class ReportAggregator:
    """Assembles snapshots of every collector into one report.

    Args:
        server: Server collector.
        alerts: Alert engine whose recent alerts are reported.
        client: Optional client collector; adds a "client" section.
        clock: Source of time (default: system clock).
        top_endpoints: Number of endpoints listed.
        recent_alerts: Number of alerts listed.
    """

    def __init__(
        self,
        server: ServerMetricsCollector,
        alerts: AlertEngine | None = None,
        client: ClientMetricsCollector | None = None,
        clock: ClockPort | None = None,
        top_endpoints: int = TOP_ENDPOINT_LIMIT,
        recent_alerts: int = RECENT_ALERT_LIMIT,
    ) -> None:
        self.server = server
        self.alerts = alerts or server.alerts
        self.client = client
        self._clock = clock or SystemClock()
        self.top_endpoints = top_endpoints
        self.recent_alerts = recent_alerts

    def build_report(
        self, top_endpoints: int | None = None, recent_alerts: int | None = None
    ) -> dict[str, Any]:
        """Return the current report. Never raises.

        Args:
            top_endpoints: Override for the number of endpoints listed.
            recent_alerts: Override for the number of alerts listed.
        """
        top = self.top_endpoints if top_endpoints is None else top_endpoints
        recent = self.recent_alerts if recent_alerts is None else recent_alerts
        report: dict[str, Any] = {}
        sections: list[tuple[str, Callable[[], Any]]] = [
            ("uptime_ms", self._uptime),
            ("requests", self._requests),
            ("database", self._database),
            ("memory", self._memory),
            ("health_score", self._health),
            ("top_endpoints", lambda: self._top_endpoints(top)),
            ("recent_alerts", lambda: self._recent_alerts(recent)),
            ("client", self._client),
            ("generated_at", self._clock.now),
        ]
        for name, builder in sections:
            value = self._section(name, builder)
            if value is not _OMIT:
                report[name] = value
        return report

    def _section(self, name: str, builder: Callable[[], Any]) -> Any:
        try:
            value = builder()
        except Exception:
            log_exception("Failed to build report section", section=name)
            return _OMIT
        return _OMIT if value is None else value

    def _uptime(self) -> float:
        return max(0.0, self._clock.now() - self.server.started_at)

    def _requests(self) -> dict[str, Any]:
        totals = self.server.request_totals()
        total = totals["total"]
        uptime = self._uptime()
        return {
            "total": total,
            "avg_duration_ms": _avg(totals["total_duration_ms"], total),
            "slow_count": totals["slow"],
            "error_count": totals["errors"],
            "slow_rate": _percent(totals["slow"], total),
            "error_rate": _percent(totals["errors"], total),
            "per_minute": round(total / uptime * 60_000) if uptime > 0 else 0,
        }

    def _database(self) -> dict[str, Any]:
        totals = self.server.query_totals()
        total = totals["total"]
        return {
            "total_queries": total,
            "avg_duration_ms": _avg(totals["total_duration_ms"], total),
            "slow_count": totals["slow"],
            "slow_rate": _percent(totals["slow"], total),
        }

    def _memory(self) -> dict[str, Any] | None:
        probe = self.server.memory_probe
        if probe is None:
            return None
        info = probe.read()
        if info is None or info.total_bytes <= 0:
            return None
        return {
            "heap_used": info.used_bytes,
            "heap_total": info.total_bytes,
            "usage_percent": min(100.0, _percent(info.used_bytes, info.total_bytes)),
            "trend": self.server.memory_trend(),
        }

    def _health(self) -> int:
        ratio = read_memory_ratio(self.server.memory_probe)
        return health_score(self.server.aggregates(memory_ratio=ratio))

    def _top_endpoints(self, limit: int) -> list[dict[str, Any]]:
        return [
            {
                "endpoint": endpoint,
                "count": stats.count,
                "avg_duration_ms": round(stats.avg_duration_ms, 2),
                "max_duration_ms": stats.max_duration_ms,
                "min_duration_ms": stats.min_duration_ms,
            }
            for endpoint, stats in self.server.top_endpoints(limit)
        ]

    def _recent_alerts(self, limit: int) -> list[dict[str, Any]]:
        return [alert.to_dict() for alert in self.alerts.recent(limit)]

    def _client(self) -> dict[str, Any] | None:
        if self.client is None:
            return None
        return self.client.stats()
