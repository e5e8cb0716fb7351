"""
ScholarStream Backend - Shared Schema Pieces
==============================================

What:  Base model with the API's camelCase convention, and the error and
       health response shapes shared by every router.

JSON field names are camelCase (``applicationStatus``), Python attribute names
stay snake_case; ``populate_by_name`` lets tests and services construct models
with either.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for every API schema: camelCase aliases, ORM-object input."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class UpdateModel(CamelModel):
    """
    Base for request bodies that change stored state.

    ``extra="forbid"`` makes each update schema an explicit allow-list: a
    client sending ``paymentStatus`` or ``role`` in a profile edit gets a 422
    instead of having the field silently merged.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


class MessageResponse(BaseModel):
    message: str


class ErrorResponse(BaseModel):
    """
    Standardized error body returned by every exception handler.

    Example:
        {
            "error": "forbidden",
            "message": "Access denied",
            "request_id": "1f0c9a2b"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    payments: str = Field(description="Payment provider: configured, not_configured, circuit_open")
    uptime_seconds: float = Field(description="Seconds since service started")
