"""
ScholarStream Backend - Request Logging Middleware
====================================================

What:  One access log line per request: method, path, status, duration,
       request ID, acting user and client IP.
When:  After RequestIDMiddleware, so the request ID is already set.

Log level follows the status code:
    5xx → ERROR, 4xx → WARNING, everything else → INFO

``user_id`` is filled in by the ``get_current_actor`` dependency
(``request.state.user_id``); unauthenticated requests log ``-``.
Request bodies are never logged: they carry payment references and
personal data.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from scholarstream.middleware.request_id import request_id_var

logger = logging.getLogger("scholarstream.access")

# Polled by load balancers every few seconds
QUIET_PATHS = frozenset({"/health"})


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        client_ip = request.client.host if request.client else "unknown"
        user_id = getattr(request.state, "user_id", None) or "-"
        rid = request_id_var.get("")

        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] user=%s from %s",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            user_id,
            client_ip,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "user_id": user_id,
                "client_ip": client_ip,
            },
        )
        return response
