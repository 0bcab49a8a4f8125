"""
ASGI middleware for tracking HTTP request metrics.
Records request count, duration, and errors.
"""
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from metering.utils.metrics import http_requests_total, http_request_duration_seconds, errors_total


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to track HTTP metrics for Prometheus."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.time()
        method = request.method

        try:
            response = await call_next(request)
        except Exception:
            errors_total.labels(error_type="exception").inc()
            raise

        # Label by route template (/alerts/{alert_id}) to keep cardinality bounded
        path = self._route_path(request)
        http_requests_total.labels(method=method, path=path, status=response.status_code).inc()
        http_request_duration_seconds.labels(method=method, path=path).observe(time.time() - start_time)

        if response.status_code >= 400:
            errors_total.labels(error_type=f"{response.status_code // 100}xx").inc()

        return response

    @staticmethod
    def _route_path(request: Request) -> str:
        route = request.scope.get("route")
        if route is not None and getattr(route, "path", None):
            return route.path
        return "unmatched"
