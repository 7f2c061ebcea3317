"""
Quillnest Backend — Request ID Middleware
===========================================

Every request gets a correlation ID, echoed back as X-Request-ID and copied
into error bodies and access-log lines. It is kept in a ContextVar so
exception handlers and loggers can read it without the request object.

A client may supply its own ID (useful when a gateway already assigned one),
but only if it looks like an ID: letters, digits, `-`, `_`, `.` and `:`,
at most 64 characters. Anything else is replaced, since the value is
written verbatim into log lines.
"""

import re
import uuid
from contextvars import ContextVar
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

_CLIENT_ID = re.compile(r"[A-Za-z0-9._:\-]{1,64}")


def new_request_id() -> str:
    return uuid.uuid4().hex[:8]


def accept_client_id(value: Optional[str]) -> Optional[str]:
    """Return the client's ID if it is safe to log, else None."""
    if value and _CLIENT_ID.fullmatch(value):
        return value
    return None


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = accept_client_id(request.headers.get(REQUEST_ID_HEADER)) or new_request_id()

        request_id_var.set(rid)
        request.state.request_id = rid
        response = await call_next(request)

        response.headers[REQUEST_ID_HEADER] = rid
        return response
