"""
ScholarStream Backend - Request ID Middleware
===============================================

What:  Gives each request a short correlation ID and returns it in
       ``X-Request-ID``.
How:   Reuses a client-supplied ``X-Request-ID`` when present, otherwise
       generates one; stores it in a ContextVar for loggers and exception
       handlers, and on ``request.state`` for route handlers.

Payment support:
    Error bodies carry ``request_id``, so a student reporting a failed
    payment can hand support the exact ID to search for.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests on one event loop each see their own ID
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

MAX_CLIENT_ID_LENGTH = 64


class RequestIDMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get("X-Request-ID", "").strip()[:MAX_CLIENT_ID_LENGTH]
        if not rid:
            rid = uuid.uuid4().hex[:8]

        # Not reset afterwards: the catch-all 500 handler runs outside this
        # middleware and still reports the ID
        request_id_var.set(rid)
        request.state.request_id = rid

        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response
