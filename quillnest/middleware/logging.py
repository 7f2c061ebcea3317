"""
Quillnest Backend — Request Logging Middleware
================================================

What:  One access-log line per request, written to the `quillnest.access`
       logger after the response is produced.
When:  Inside RequestIDMiddleware, so the request ID is already set, and
       around the routes, so the authentication gate has already attached
       `request.state.identity` for authenticated calls.

Line format:
    PUT /api/v1/post/update-post/<id> 403 12.4ms [a1b2c3d4] user=<uuid> from 10.0.0.7

What we log vs what we DON'T log (privacy):
    Log:        method, path, status, duration, IP, request ID, caller's user id
    Never log:  request bodies (passwords, reset tokens), query strings
                (feed cursors are harmless, but verification links are not),
                uploaded files, the Authorization header
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from quillnest.middleware.request_id import request_id_var

logger = logging.getLogger("quillnest.access")

# Load balancer health checks would drown everything else
QUIET_PATHS = {"/health"}

SLOW_REQUEST_MS = 2000


def level_for(status: int, duration_ms: float) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400 or duration_ms >= SLOW_REQUEST_MS:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log level follows the status class (5xx ERROR, 4xx WARNING), and
    successful requests slower than SLOW_REQUEST_MS are raised to WARNING.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in QUIET_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - started) * 1000

        identity = getattr(request.state, "identity", None)
        user = str(identity.subject_id) if identity is not None else "-"
        client_ip = request.client.host if request.client else "unknown"
        rid = request_id_var.get("")

        logger.log(
            level_for(response.status_code, duration_ms),
            "%s %s %d %.1fms [%s] user=%s from %s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            rid,
            user,
            client_ip,
            extra={
                "request_id": rid,
                "user_id": user,
                "status": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )
        return response
