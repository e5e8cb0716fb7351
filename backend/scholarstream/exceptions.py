"""
ScholarStream Backend - Custom Exception Hierarchy
====================================================

What:  Application-specific exceptions, one per error kind the API reports.
How:   Each exception carries a user-facing message and a context dict.
       Global handlers (registered in main.py) convert them into JSON
       responses; context is logged server-side and never returned verbatim.
Who:   Raised by services and dependencies; caught by the global handlers.

Exception Hierarchy:
    ScholarStreamError (base)
    ├── ValidationError            → 400 Bad Request (illegal transition, bad amount, ...)
    ├── AuthenticationError        → 401 Unauthorized
    ├── ForbiddenError             → 403 Forbidden
    ├── NotFoundError              → 404 Not Found (absent or malformed reference)
    ├── ConflictError              → 409 Conflict (duplicates, lost races)
    ├── PaymentProviderError       → 502 Bad Gateway
    ├── PaymentNotConfiguredError  → 503 Service Unavailable
    ├── CircuitBreakerOpenError    → 503 Service Unavailable
    └── DatabaseError              → 500 Internal Server Error
"""

from typing import Any, Dict, Optional


class ScholarStreamError(Exception):
    """
    Base exception for all ScholarStream application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(ScholarStreamError):
    """
    Raised when a request is well-formed but breaks a business rule.

    When:    Illegal status transition, sub-minimum charge, unsuccessful
             payment, payment metadata mismatch, deleting a non-pending
             application as its owner.
    HTTP:    400 Bad Request

    Schema-level problems (missing body fields, wrong types) are rejected by
    FastAPI itself with 422 before any service code runs.
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class AuthenticationError(ScholarStreamError):
    """Missing, malformed, expired or unknown bearer credential. HTTP 401."""

    def __init__(
        self,
        message: str = "Authentication required",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ForbiddenError(ScholarStreamError):
    """
    Raised when the caller is authenticated but the policy denies the action.

    HTTP:    403 Forbidden
    Never downgraded to 404: existence is checked first, so a 403 only ever
    describes a resource that exists.
    """

    def __init__(
        self,
        message: str = "Access denied",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(ScholarStreamError):
    """
    Raised when a requested resource does not exist.

    HTTP:    404 Not Found
    Malformed identity references (not a UUID) land here as well, so the
    API does not expose the identifier format.
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"{resource.capitalize()} not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)
        self.resource = resource


class ConflictError(ScholarStreamError):
    """
    Raised when the request collides with existing state.

    When:    Second application or review for the same (user, scholarship)
             pair; a conditional status update lost a concurrent race.
    HTTP:    409 Conflict
    """

    def __init__(
        self,
        message: str = "The resource already exists",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class PaymentProviderError(ScholarStreamError):
    """
    Raised when the payment provider fails or returns unusable data.

    When:    After tenacity retries are exhausted, or on a non-retryable
             provider error other than "no such resource".
    HTTP:    502 Bad Gateway

    ``retryable`` tells the webhook handler whether a redelivery could
    succeed (network trouble) or not (the provider rejected the request).
    """

    def __init__(
        self,
        message: str = "The payment provider is unavailable. Please try again later.",
        retryable: bool = True,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
        self.retryable = retryable


class PaymentNotConfiguredError(ScholarStreamError):
    """No Stripe secret key or webhook secret configured. HTTP 503."""

    def __init__(
        self,
        message: str = "Payments are not configured on this server.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class CircuitBreakerOpenError(ScholarStreamError):
    """
    Raised when the provider circuit breaker is OPEN.

    What:    Too many consecutive provider failures tripped the breaker.
    HTTP:    503 Service Unavailable, with Retry-After.

    State machine:
        CLOSED → (threshold failures) → OPEN → (recovery timeout) → HALF_OPEN
        HALF_OPEN → success → CLOSED ; failure → OPEN
    """

    def __init__(
        self,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            "The payment service is temporarily unavailable due to repeated failures. "
            f"Please retry in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(message=message, context=ctx)
        self.recovery_time = recovery_time


class DatabaseError(ScholarStreamError):
    """
    Raised when database operations fail unexpectedly.

    HTTP:    500 Internal Server Error
    The client message is always generic; statement details go to the log.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
