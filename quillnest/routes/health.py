"""
Quillnest Backend — Health Check Route
========================================

What:  Health endpoint for monitoring and load balancer health checks.
How:   Probes the database with SELECT 1 and reports the media host and mail
       provider through their circuit breakers.

Status levels:
    - healthy:   everything operational (HTTP 200)
    - degraded:  media host or mail unavailable / circuit open (HTTP 200)
    - unhealthy: database unreachable (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Request, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from quillnest import __version__
from quillnest.schemas.common import HealthResponse
from quillnest.services.resilience import CircuitBreaker

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={503: {"description": "Database unreachable", "model": HealthResponse}},
    summary="Service health check",
)
async def health_check(request: Request, response: Response) -> HealthResponse:
    state = request.app.state
    overall = "healthy"

    # ── Database (critical) ───────────────────────────────────────────────
    db_status = "connected"
    try:
        async with state.database.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", e)

    # ── Media host ────────────────────────────────────────────────────────
    media = state.media_service
    if media.circuit_state == CircuitBreaker.OPEN:
        media_status = "circuit_open"
    elif await media.health_check():
        media_status = "available"
    else:
        media_status = "unavailable"

    # ── Mail ──────────────────────────────────────────────────────────────
    mail_status = state.mail_service.circuit_state

    if overall != "unhealthy" and (media_status != "available" or mail_status == CircuitBreaker.OPEN):
        overall = "degraded"
    if overall == "unhealthy":
        response.status_code = 503

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        media=media_status,
        mail=mail_status,
        uptime_seconds=round(time.time() - _start_time, 2),
        circuits={"media": media.circuit_state, "mail": mail_status},
    )
