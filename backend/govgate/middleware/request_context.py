"""
GovGate — Request Context & Access Log Middleware
=================================================

What:  Assigns a request id, exposes it through a ContextVar, and writes one
       access-log line per request once the response is known.
Why:   Audit lines from the CSRF and rate-limit stages carry the same id as the
       access line, so a rejected request can be traced end to end.
How:   Outermost Starlette middleware. It wraps the session middleware and the
       pipeline, so it also sees responses produced by short-circuiting stages.

Log line:
    POST /api/auth/login 429 1.3ms [a1b2c3d4] from 10.0.0.7
"""

import logging
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests on one event loop each see their own id
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

access_logger = logging.getLogger("govgate.access")

QUIET_PATHS = {"/health"}


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Request id propagation plus access logging.

    The id comes from the client's X-Request-ID header when present (so a
    frontend can correlate its own error reports), otherwise a short uuid.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        token = request_id_var.set(rid)
        request.state.request_id = rid
        start = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers["X-Request-ID"] = rid
        if request.url.path in QUIET_PATHS:
            return response

        duration_ms = (time.perf_counter() - start) * 1000
        status = response.status_code
        if status >= 500:
            level = logging.ERROR
        elif status >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO

        client_ip = request.client.host if request.client else "unknown"
        access_logger.log(
            level,
            "%s %s %d %.1fms [%s] from %s",
            request.method,
            request.url.path,
            status,
            duration_ms,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": request.url.path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )
        return response
