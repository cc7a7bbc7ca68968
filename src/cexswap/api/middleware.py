"""HTTP request logging middleware.

Logs every request with method, path, status code and duration.
"""

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("cexswap.http")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log HTTP requests with timing and status info."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id", str(uuid.uuid4())[:8])
        start = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["x-request-id"] = request_id
            return response
        finally:
            duration_ms = (time.perf_counter() - start) * 1000

            level = logging.INFO if status_code < 400 else logging.WARNING
            if status_code >= 500:
                level = logging.ERROR

            client = request.client.host if request.client else None
            logger.log(
                level,
                f"[{request_id}] {request.method} {request.url.path} -> {status_code} "
                f"({duration_ms:.1f}ms, client={client})",
            )
