"""ASGI generic adapter for request instrumentation and the report endpoint.

This adapter provides framework-agnostic ASGI middleware and application
that can be used with any ASGI server (uvicorn, hypercorn, daphne)
without requiring FastAPI as a dependency.
"""

import fnmatch
import json
from collections.abc import Callable, Coroutine
from typing import Any
from urllib.parse import parse_qs

from perfwatch.adapters.frameworks.query_params import _parse_limit_param
from perfwatch.adapters.hosts import BeaconHost
from perfwatch.core.logs import log_exception
from perfwatch.core.server import ServerMetricsCollector
from perfwatch.monitor import PerformanceMonitor

# ASGI type aliases
Scope = dict[str, Any]
Receive = Callable[[], Coroutine[Any, Any, dict[str, Any]]]
Send = Callable[[dict[str, Any]], Coroutine[Any, Any, None]]
ASGIApp = Callable[[Scope, Receive, Send], Coroutine[Any, Any, None]]

REPORT_PATH = "/performance/report"
BEACON_PATH = "/performance/client"
MAX_BEACON_BYTES = 256 * 1024


def _parse_query_params(scope: Scope) -> dict[str, list[str]]:
    """Parse query string from ASGI scope into parameter dictionary.

    Args:
        scope: ASGI scope dictionary containing request metadata.

    Returns:
        Dictionary mapping parameter names to lists of values.
        Returns empty dict if query_string is missing or empty.
    """
    query_string = scope.get("query_string", b"").decode(errors="replace")
    return parse_qs(query_string)


def _endpoint_for(scope: Scope) -> str:
    """Build the "METHOD path" label for a request.

    Prefers the matched route template (set by routers such as Starlette)
    so that "/contacts/1" and "/contacts/2" share one endpoint.
    """
    route = scope.get("route")
    path = getattr(route, "path", None) or scope.get("path", "")
    return f"{scope.get('method', 'GET')} {path}"


async def _send_response(send: Send, status: int, content_type: str, body: str) -> None:
    """Send an HTTP response with headers and body.

    Args:
        send: ASGI send callable for writing response.
        status: HTTP status code.
        content_type: Content-Type header value.
        body: Response body as string (will be encoded to bytes).
    """
    headers = [(b"content-type", content_type.encode())]
    await send({"type": "http.response.start", "status": status, "headers": headers})
    await send({"type": "http.response.body", "body": body.encode()})


async def _send_json(send: Send, status: int, payload: Any) -> None:
    await _send_response(send, status, "application/json", json.dumps(payload))


async def _handle_endpoint(
    send: Send,
    endpoint_func: Callable[[], Coroutine[Any, Any, tuple[int, Any]]],
    log_message: str,
) -> None:
    """Execute an endpoint function with error handling and send response.

    Args:
        send: ASGI send callable for writing response.
        endpoint_func: Async function returning (status, JSON payload).
        log_message: Message to log on error.
    """
    try:
        status, payload = await endpoint_func()
        body = json.dumps(payload)
    except Exception:
        log_exception(log_message)
        await _send_json(send, 500, {"error": "Internal Server Error"})
        return
    await _send_response(send, status, "application/json", body)


async def _read_body(receive: Receive, limit: int = MAX_BEACON_BYTES) -> bytes | None:
    """Read the full request body, or None if it exceeds limit."""
    chunks: list[bytes] = []
    size = 0
    while True:
        message = await receive()
        if message["type"] == "http.disconnect":
            break
        chunk = message.get("body", b"")
        size += len(chunk)
        if size > limit:
            return None
        chunks.append(chunk)
        if not message.get("more_body", False):
            break
    return b"".join(chunks)


class ASGIPerformanceMiddleware:
    """ASGI middleware that records every HTTP request in a server collector.

    The collector never raises, so instrumentation cannot change the
    outcome of a request. Exceptions from the wrapped app are recorded
    as status 500 and re-raised.
    """

    def __init__(
        self,
        app: ASGIApp,
        collector: ServerMetricsCollector,
        exclude_paths: list[str] | None = None,
    ) -> None:
        """Initialize the middleware with a wrapped app and a collector.

        Args:
            app: The ASGI application to wrap.
            collector: Server collector receiving request metrics.
            exclude_paths: List of paths to exclude from instrumentation.
                          Supports exact matches and wildcard patterns
                          (e.g., "/internal/*").
        """
        self.app = app
        self.collector = collector
        self.exclude_paths = exclude_paths or []

    def set_exclude_paths(self, paths: list[str]) -> None:
        """Replace the excluded path patterns.

        Args:
            paths: Exact paths or wildcard patterns to skip.
        """
        self.exclude_paths = list(paths)

    def _path_excluded(self, path: str) -> bool:
        """Check if path matches any pattern in exclude_paths."""
        return any(fnmatch.fnmatch(path, pattern) for pattern in self.exclude_paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI callable interface that processes requests through the wrapped app."""
        if scope["type"] != "http" or self._path_excluded(scope["path"]):
            await self.app(scope, receive, send)
            return

        token = self.collector.on_request_start()
        captured: dict[str, Any] = {"status": None, "exception": None}

        async def wrapped_send(message: dict[str, Any]) -> None:
            if message["type"] == "http.response.start":
                captured["status"] = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, wrapped_send)
        except Exception as e:
            captured["exception"] = e
            captured["status"] = 500

        self.collector.on_request_end(token, _endpoint_for(scope), captured["status"] or 500)
        if captured["exception"] is not None:
            raise captured["exception"]


def create_asgi_app(
    monitor: PerformanceMonitor,
    host: BeaconHost | None = None,
) -> ASGIApp:
    """Create an ASGI app serving the performance report and client beacons.

    Routes:
        GET /performance/report   - JSON report (?top=N&alerts=N)
        POST /performance/client  - beacon with browser entries (needs host)

    Args:
        monitor: The process-wide performance monitor.
        host: Beacon host receiving client entries. Without it the beacon
              route answers 404.

    Returns:
        ASGI application callable.
    """

    allowed = {REPORT_PATH: "GET"}
    if host is not None:
        allowed[BEACON_PATH] = "POST"

    async def report(scope: Scope) -> tuple[int, Any]:
        params = _parse_query_params(scope)
        return 200, monitor.reports.build_report(
            top_endpoints=_parse_limit_param(params, "top"),
            recent_alerts=_parse_limit_param(params, "alerts"),
        )

    async def beacon(receive: Receive) -> tuple[int, Any]:
        if host is None:
            return 404, {"error": "Not Found"}
        body = await _read_body(receive)
        if body is None:
            return 413, {"error": "Beacon too large"}
        try:
            counts = host.ingest(json.loads(body or b"{}"))
        except ValueError:
            return 400, {"error": "Invalid beacon payload"}
        return 202, counts

    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            return

        path = scope["path"]
        method = scope.get("method", "GET")

        if path not in allowed:
            await _send_response(send, 404, "text/plain", "Not Found")
        elif method != allowed[path]:
            await _send_response(send, 405, "text/plain", "Method Not Allowed")
        elif path == REPORT_PATH:
            await _handle_endpoint(send, lambda: report(scope), "Error building performance report")
        else:
            await _handle_endpoint(send, lambda: beacon(receive), "Error ingesting client beacon")

    return app
