"""
Quillnest Backend — Shared Response Schemas
=============================================

What:  Response models used by more than one route module.
"""

from typing import Dict, Optional

from pydantic import BaseModel, Field


class MessageResponse(BaseModel):
    """Plain acknowledgement, e.g. after a delete or a signout."""
    message: str = Field(description="Human-readable result")


class ErrorResponse(BaseModel):
    """
    What:  Standardized error body for all API errors.
    Why:   Clients need one structure to parse errors programmatically.

    Example:
        {
            "error": "unauthorized",
            "message": "Invalid or expired token",
            "request_id": "a1b2c3d4"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """
    What:  Service and dependency status for monitoring checks.

    The database is critical (unhealthy without it); media and mail are not
    (degraded when their circuit is open or the host does not answer).
    """
    status: str = Field(description="Overall status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    media: str = Field(description="Media host: available, unavailable, circuit_open")
    mail: str = Field(description="Mail provider circuit: closed, open, half_open")
    uptime_seconds: float = Field(description="Seconds since service started")
    circuits: Dict[str, str] = Field(default_factory=dict, description="Circuit state per upstream")
