"""Request logging middleware.

Assigns every request an id (the caller's X-Request-ID when present), exposes
it to route dependencies through ``request.state`` and echoes it back in the
response headers. One "Request completed" line is logged per request.
"""

import logging
import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from shortener.logging_config import LOGGER_NAME, RequestLoggerAdapter

__all__ = ["REQUEST_ID_HEADER", "RequestLoggingMiddleware"]

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, logger: logging.Logger | None = None) -> None:
        super().__init__(app)
        self.logger = logger or logging.getLogger(LOGGER_NAME)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        response.headers[REQUEST_ID_HEADER] = request_id
        RequestLoggerAdapter(self.logger, {"request_id": request_id}).info(
            f"Request completed: {request.method} {request.url.path} {response.status_code} in {duration_ms:.2f}ms",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        return response
