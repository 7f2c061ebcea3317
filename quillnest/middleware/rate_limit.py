"""
Quillnest Backend — Rate Limiting Middleware
==============================================

What:  Per-IP sliding window rate limiter with two buckets.
Why:   The credential endpoints (signup, login, verify, forgot/reset password)
       are the targets of password guessing and mail flooding, so they get a
       much smaller budget than the rest of the API.
How:   Request timestamps are kept in memory per (client IP, bucket).

Algorithm: Sliding Window Counter
    1. Each (IP, bucket) gets a list of request timestamps
    2. On each request, drop timestamps older than the window
    3. If the remaining count >= limit, reject with 429
    4. Otherwise record the current timestamp and let the request through

Limitation:
    State is per process. Several uvicorn workers each keep their own
    counters, so the effective limit is multiplied by the worker count.
"""

import logging
import time
from collections import defaultdict
from typing import Callable, Dict, List, Tuple

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from quillnest.config import settings as default_settings

logger = logging.getLogger(__name__)

GENERAL = "general"
AUTH = "auth"

AUTH_PATH_PREFIXES = (
    "/api/v1/signup",
    "/api/v1/login",
    "/api/v1/verify/",
    "/api/v1/forgot-password",
    "/api/v1/reset-password",
)


def bucket_for(path: str) -> str:
    return AUTH if path.startswith(AUTH_PATH_PREFIXES) else GENERAL


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    In-memory sliding window rate limiter.

    Args:
        settings: Source of both bucket limits (defaults to the process settings)
        clock: Time source, replaceable in tests

    Excluded paths:
        /health and the API docs are never limited.

    Response on rate limit:
        HTTP 429 with a Retry-After header (seconds until the oldest request
        in the window expires) and the standard error body.
    """

    EXCLUDED_PATHS = {"/health", "/docs", "/openapi.json", "/redoc"}
    CLEANUP_EVERY = 1000

    def __init__(self, app, settings=None, clock: Callable[[], float] = time.time, **kwargs):
        super().__init__(app, **kwargs)
        settings = settings or default_settings
        self.limits: Dict[str, Tuple[int, int]] = {
            GENERAL: (settings.rate_limit_requests, settings.rate_limit_window),
            AUTH: (settings.auth_rate_limit_requests, settings.auth_rate_limit_window),
        }
        self.clock = clock
        self._requests: Dict[Tuple[str, str], List[float]] = defaultdict(list)
        self._seen = 0

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in self.EXCLUDED_PATHS:
            return await call_next(request)

        # Behind a proxy this is the proxy's address
        client_ip = request.client.host if request.client else "unknown"
        bucket = bucket_for(path)
        limit, window = self.limits[bucket]
        key = (client_ip, bucket)

        now = self.clock()
        window_start = now - window
        timestamps = [ts for ts in self._requests[key] if ts > window_start]
        self._requests[key] = timestamps

        if len(timestamps) >= limit:
            retry_after = int(timestamps[0] + window - now) + 1
            logger.warning(
                "Rate limit exceeded for IP %s (%s bucket): %d requests in %ds window",
                client_ip, bucket, len(timestamps), window,
            )
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": f"Too many requests. Please wait {retry_after} seconds before retrying.",
                    "details": {"retry_after": retry_after, "bucket": bucket},
                    "request_id": None,
                },
                headers={"Retry-After": str(retry_after)},
            )

        timestamps.append(now)

        self._seen += 1
        if self._seen % self.CLEANUP_EVERY == 0:
            self._cleanup_inactive(now)

        return await call_next(request)

    def _cleanup_inactive(self, now: float) -> None:
        """Drop (IP, bucket) entries with no request inside their window."""
        inactive = [
            key for key, timestamps in self._requests.items()
            if not timestamps or timestamps[-1] <= now - self.limits[key[1]][1]
        ]
        for key in inactive:
            del self._requests[key]

        if inactive:
            logger.debug("Cleaned up %d inactive rate-limit entries", len(inactive))
