"""
ScholarStream Backend - Health Check Route
============================================

What:  GET /health for load balancers and container health checks.

Status levels:
    healthy    database reachable, payment provider configured and closed circuit
    degraded   database reachable, payments unavailable (not configured / circuit open)
    unhealthy  database unreachable (HTTP 503, stop routing traffic)

The provider is not called; only its circuit breaker state is read, so a
health check never spends Stripe API quota.
"""

import logging
import time

from fastapi import APIRouter, Depends, Request, Response

from scholarstream import __version__
from scholarstream.schemas.common import HealthResponse
from scholarstream.services.payment_provider import PaymentProvider
from scholarstream.services.stripe_service import CircuitBreaker, get_payment_provider

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(
    request: Request,
    response: Response,
    provider: PaymentProvider = Depends(get_payment_provider),
) -> HealthResponse:
    overall = "healthy"

    database = getattr(request.app.state, "database", None)
    if database is not None and await database.ping():
        db_status = "connected"
    else:
        db_status = "disconnected"
        overall = "unhealthy"
        response.status_code = 503

    breaker = getattr(provider, "circuit_breaker", None)
    if not provider.configured:
        payments = "not_configured"
    elif breaker is not None and breaker.state == CircuitBreaker.OPEN:
        payments = "circuit_open"
    else:
        payments = "configured"
    if payments != "configured" and overall == "healthy":
        overall = "degraded"

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        payments=payments,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
