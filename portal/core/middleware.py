"""Middleware: correlation id, access log and timing"""

import time
import logging
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("portal.access")

CORRELATION_HEADER = "X-Correlation-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    For every request:
      - reuse the inbound X-Correlation-ID or generate one
      - log method, path, client ip, status and elapsed ms
      - echo the correlation id in the response header
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid4())
        request.state.correlation_id = correlation_id

        start = time.perf_counter()
        client_ip = request.client.host if request.client else "-"
        method = request.method
        path = request.url.path

        try:
            response = await call_next(request)
        except Exception as exc:
            elapsed = (time.perf_counter() - start) * 1000
            logger.error(
                "[%s] %s %s <- %s | 500 ERROR | %.1fms | %s",
                correlation_id, method, path, client_ip, elapsed, str(exc),
            )
            raise

        elapsed = (time.perf_counter() - start) * 1000
        status = response.status_code

        if path not in ("/health", "/docs", "/redoc", "/openapi.json"):
            log_fn = logger.info if status < 400 else logger.warning
            log_fn(
                "[%s] %s %s <- %s | %d | %.1fms",
                correlation_id, method, path, client_ip, status, elapsed,
            )

        response.headers[CORRELATION_HEADER] = correlation_id
        return response
