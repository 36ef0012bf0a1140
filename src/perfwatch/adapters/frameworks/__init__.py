"""Framework adapters for request instrumentation and the report endpoint.

The FastAPI adapter is imported from its module so that fastapi stays an
optional dependency.
"""

from perfwatch.adapters.frameworks.asgi import ASGIPerformanceMiddleware, create_asgi_app

__all__ = ["ASGIPerformanceMiddleware", "create_asgi_app"]
