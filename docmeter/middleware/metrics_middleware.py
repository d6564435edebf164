"""
ASGI middleware for tracking HTTP request metrics.
Records request count, duration, and errors.
"""
import re
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from docmeter.utils.metrics import errors_total, http_request_duration_seconds, http_requests_total

_UUID_RE = re.compile(r'[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}', re.IGNORECASE)
_HEX_ID_RE = re.compile(r'/[0-9a-f]{32}(?=/|$)', re.IGNORECASE)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to track HTTP metrics for Prometheus."""

    async def dispatch(self, request: Request, call_next):
        # Skip metrics endpoint to avoid recursion
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.time()
        method = request.method
        normalized_path = self._normalize_path(request.url.path)

        try:
            response = await call_next(request)
        except Exception:
            errors_total.labels(error_type="exception").inc()
            raise

        status_code = response.status_code
        http_requests_total.labels(method=method, path=normalized_path, status=status_code).inc()
        http_request_duration_seconds.labels(method=method, path=normalized_path).observe(
            time.time() - start_time
        )
        if status_code >= 400:
            errors_total.labels(error_type=f"{status_code // 100}xx").inc()
        return response

    def _normalize_path(self, path: str) -> str:
        """
        Normalize path to reduce cardinality.
        Job ids are UUIDs; webhook and delivery ids are 32-char sortable hex ids.
        """
        path = _UUID_RE.sub('{id}', path)
        path = _HEX_ID_RE.sub('/{id}', path)
        return re.sub(r'/\d+(?=/|$)', '/{id}', path)
