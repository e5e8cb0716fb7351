"""
ScholarStream Backend - FastAPI Application Factory
=====================================================

What:  Creates and configures the FastAPI application instance.
How:   ``create_app()`` assembles middleware, exception handlers and routers;
       the lifespan owns the database pool.
Who:   uvicorn (``uvicorn scholarstream.main:app``) and the test suite.

Application Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │                     FastAPI App                         │
    │                                                         │
    │  Middleware:   Request ID → Logging → GZip → CORS       │
    │                                                         │
    │  Routers:      /api/applications   /api/payment         │
    │                /api/reviews        /api/users   /health │
    │                                                         │
    │  Exception handlers (one status per error kind):        │
    │    Validation→400  Auth→401  Forbidden→403  NotFound→404│
    │    Conflict→409  Provider→502  Unavailable→503  DB→500  │
    └─────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:   logging → configuration check (logged, not fatal) →
               Database created and stored on ``app.state.database``
    Shutdown:  pool disposed
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from scholarstream import __version__
from scholarstream.config import settings
from scholarstream.database import create_database
from scholarstream.exceptions import (
    AuthenticationError,
    CircuitBreakerOpenError,
    ConflictError,
    DatabaseError,
    ForbiddenError,
    NotFoundError,
    PaymentNotConfiguredError,
    PaymentProviderError,
    ScholarStreamError,
    ValidationError,
)
from scholarstream.middleware.logging import RequestLoggingMiddleware
from scholarstream.middleware.request_id import RequestIDMiddleware, request_id_var
from scholarstream.routes import applications, health, payment, reviews, users

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure the root logger once, at startup.

    Format: 2025-01-15T12:00:00 [INFO] scholarstream.services.lifecycle: ...
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Third-party libraries that log every request/statement at INFO
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info("=" * 60)
    logger.info("ScholarStream Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Keep serving: health checks and the payment status endpoint report it
        logger.error("Configuration error: %s", str(e))

    database = create_database()
    app.state.database = database
    logger.info("Database pool created")
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("ScholarStream Backend shutting down...")
    await database.dispose()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_response(status_code: int, error: str, message: str, details=None, headers=None) -> JSONResponse:
    content = {"error": error, "message": message, "request_id": request_id_var.get("")}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map each ScholarStreamError subclass to one HTTP status.

        ValidationError            → 400
        AuthenticationError        → 401
        ForbiddenError             → 403
        NotFoundError              → 404
        ConflictError              → 409
        PaymentProviderError       → 502
        PaymentNotConfiguredError  → 503
        CircuitBreakerOpenError    → 503 + Retry-After
        DatabaseError              → 500 (generic message)
        ScholarStreamError / other → 500

    Context dicts are logged, never returned, except ``field`` on validation
    errors and ``recovery_time`` on an open circuit.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s | %s", request_id_var.get(""), exc.message, exc.context)
        details = {"field": exc.field} if exc.field else None
        return _error_response(400, "validation_error", exc.message, details)

    @app.exception_handler(AuthenticationError)
    async def handle_authentication_error(request: Request, exc: AuthenticationError):
        logger.info("[%s] Authentication failed: %s", request_id_var.get(""), exc.message)
        return _error_response(401, "unauthorized", exc.message, headers={"WWW-Authenticate": "Bearer"})

    @app.exception_handler(ForbiddenError)
    async def handle_forbidden(request: Request, exc: ForbiddenError):
        logger.warning("[%s] Forbidden: %s | %s", request_id_var.get(""), exc.message, exc.context)
        return _error_response(403, "forbidden", exc.message)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return _error_response(404, "not_found", exc.message)

    @app.exception_handler(ConflictError)
    async def handle_conflict(request: Request, exc: ConflictError):
        logger.info("[%s] Conflict: %s | %s", request_id_var.get(""), exc.message, exc.context)
        return _error_response(409, "conflict", exc.message)

    @app.exception_handler(PaymentProviderError)
    async def handle_provider_error(request: Request, exc: PaymentProviderError):
        logger.error("[%s] Payment provider error: %s | %s", request_id_var.get(""), exc.message, exc.context)
        return _error_response(502, "payment_provider_error", exc.message)

    @app.exception_handler(PaymentNotConfiguredError)
    async def handle_not_configured(request: Request, exc: PaymentNotConfiguredError):
        logger.error("[%s] %s", request_id_var.get(""), exc.message)
        return _error_response(503, "payments_not_configured", exc.message)

    @app.exception_handler(CircuitBreakerOpenError)
    async def handle_circuit_breaker(request: Request, exc: CircuitBreakerOpenError):
        logger.warning("[%s] Circuit breaker open: %s", request_id_var.get(""), exc.message)
        return _error_response(
            503,
            "service_unavailable",
            exc.message,
            details={"recovery_time": exc.recovery_time},
            headers={"Retry-After": str(exc.recovery_time)},
        )

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error("[%s] Database error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return _error_response(500, "server_error", "An internal error occurred. Please try again later.")

    @app.exception_handler(ScholarStreamError)
    async def handle_application_error(request: Request, exc: ScholarStreamError):
        logger.error("[%s] Unhandled application error: %s | %s", request_id_var.get(""), exc.message, exc.context)
        return _error_response(500, "server_error", "An internal error occurred. Please try again later.")

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("[%s] Unexpected error: %s", request_id_var.get(""), str(exc), exc_info=True)
        return _error_response(
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="ScholarStream API",
        description=(
            "Scholarship marketplace backend: applications, moderation, "
            "Stripe-backed fee payment and reviews."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Executed in reverse order of addition: RequestID → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Total-Count", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(applications.router)
    app.include_router(payment.router)
    app.include_router(reviews.router)
    app.include_router(users.router)
    app.include_router(health.router)

    return app


app = create_app()
