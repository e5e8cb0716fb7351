"""
ScholarStream Backend - Stripe Payment Provider
=================================================

What:  Concrete PaymentProvider backed by the Stripe API.
How:   Uses ``stripe.StripeClient`` over its httpx transport so every call is
       awaitable, wraps each call with tenacity retries and a circuit breaker,
       and converts Stripe objects into the provider-neutral dataclasses.
Who:   One instance per process (``stripe_service``), handed to routes through
       the ``get_payment_provider`` dependency.

Resilience Strategy:
    1. Tenacity retry with exponential backoff + jitter, only for transient
       failures (connection errors, rate limiting)
    2. Circuit breaker so a Stripe outage fails fast with 503 instead of
       tying up requests in retries
    3. Stripe's own network retries are disabled; tenacity owns retrying

Error Translation:
    InvalidRequestError (resource_missing)   → NotFoundError
    InvalidRequestError (other)              → PaymentProviderError(retryable=False)
    AuthenticationError / PermissionError    → PaymentProviderError(retryable=False)
    APIConnectionError / RateLimitError      → PaymentProviderError(retryable=True)
    any other StripeError                    → PaymentProviderError(retryable=True)

Only the last three count as circuit breaker failures: a 4xx answer means
Stripe is up and said no.
"""

import logging
import time
from typing import Any, Dict, Optional

import stripe
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from scholarstream.config import settings
from scholarstream.exceptions import (
    CircuitBreakerOpenError,
    NotFoundError,
    PaymentNotConfiguredError,
    PaymentProviderError,
    ValidationError,
)
from scholarstream.services.payment_provider import (
    PaymentProvider,
    ProviderEvent,
    ProviderIntent,
    ProviderSession,
)

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (stripe.APIConnectionError, stripe.RateLimitError)


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Fails fast once the provider has failed ``failure_threshold`` times in a row.

    State Machine:
        CLOSED     calls pass; consecutive failures are counted
        OPEN       calls raise CircuitBreakerOpenError until
                   ``recovery_timeout`` seconds have passed since the last failure
        HALF_OPEN  one trial call passes; success closes, failure re-opens

    Not shared between worker processes. Each uvicorn worker trips on its own.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """
        Returns True when the call may proceed.

        Raises:
            CircuitBreakerOpenError while OPEN and still inside the recovery window.
        """
        if self.state != self.OPEN:
            return True

        elapsed = time.time() - (self.last_failure_time or 0)
        if elapsed >= self.recovery_timeout:
            logger.info("Stripe circuit breaker HALF_OPEN after %.1fs", elapsed)
            self.state = self.HALF_OPEN
            return True
        raise CircuitBreakerOpenError(recovery_time=max(1, int(self.recovery_timeout - elapsed)))

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Stripe circuit breaker CLOSED (provider recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == self.HALF_OPEN:
            logger.warning("Stripe circuit breaker back to OPEN (trial call failed)")
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold and self.state != self.OPEN:
            logger.warning(
                "Stripe circuit breaker OPENING after %d consecutive failures",
                self.failure_count,
            )
            self.state = self.OPEN


# ══════════════════════════════════════════════════════════════════════════
# Stripe object conversion
# ══════════════════════════════════════════════════════════════════════════

def _metadata(obj: Any) -> Dict[str, str]:
    raw = obj.get("metadata") if obj is not None else None
    return {str(key): str(value) for key, value in (raw or {}).items()}


def to_intent(obj: Any) -> ProviderIntent:
    return ProviderIntent(
        id=obj.get("id"),
        status=obj.get("status") or "",
        metadata=_metadata(obj),
        amount=obj.get("amount"),
        currency=obj.get("currency"),
        client_secret=obj.get("client_secret"),
    )


def to_session(obj: Any) -> ProviderSession:
    intent_field = obj.get("payment_intent")
    if isinstance(intent_field, str):
        intent, intent_id = None, intent_field
    elif intent_field:
        intent = to_intent(intent_field)
        intent_id = intent.id
    else:
        intent, intent_id = None, None
    return ProviderSession(
        id=obj.get("id"),
        url=obj.get("url"),
        metadata=_metadata(obj),
        payment_intent_id=intent_id,
        payment_intent=intent,
    )


# ══════════════════════════════════════════════════════════════════════════
# Stripe Service
# ══════════════════════════════════════════════════════════════════════════

class StripeService(PaymentProvider):
    """
    Stripe implementation of PaymentProvider.

    Error Handling Chain:
        call fails transiently → tenacity retries (backoff + jitter)
        → retries exhausted → circuit breaker failure recorded
        → threshold reached → later calls rejected instantly (503)
        → recovery timeout → one trial call (HALF_OPEN)
        → trial call succeeds → normal operation (CLOSED)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        client: Optional[stripe.StripeClient] = None,
    ):
        self.api_key = settings.stripe_secret_key if api_key is None else api_key
        self.webhook_secret = settings.stripe_webhook_secret if webhook_secret is None else webhook_secret
        self._client = client
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )
        if not self.api_key and client is None:
            logger.warning("STRIPE_SECRET_KEY not set; payment endpoints will return 503")

    @property
    def configured(self) -> bool:
        return bool(self.api_key) or self._client is not None

    @property
    def webhook_configured(self) -> bool:
        return bool(self.webhook_secret)

    @property
    def client(self) -> stripe.StripeClient:
        """Created lazily so the app starts (and reports 503) without a key."""
        if self._client is None:
            if not self.api_key:
                raise PaymentNotConfiguredError()
            self._client = stripe.StripeClient(
                self.api_key,
                http_client=stripe.HTTPXClient(),
                max_network_retries=0,
            )
        return self._client

    # ── PaymentProvider ───────────────────────────────────────────────────

    async def create_intent(
        self, amount: int, currency: str, metadata: Dict[str, str]
    ) -> ProviderIntent:
        params = {
            "amount": amount,
            "currency": currency,
            "metadata": metadata,
            "automatic_payment_methods": {"enabled": True},
        }
        intent = await self._invoke(
            "create_intent", "payment intent", self.client.v1.payment_intents.create_async, params=params
        )
        logger.info(
            "Stripe payment intent %s created: amount=%d %s application=%s",
            intent.get("id"),
            amount,
            currency,
            metadata.get("applicationId"),
        )
        return to_intent(intent)

    async def retrieve_intent(self, intent_ref: str) -> ProviderIntent:
        intent = await self._invoke(
            "retrieve_intent", "payment intent", self.client.v1.payment_intents.retrieve_async, intent_ref
        )
        return to_intent(intent)

    async def create_session(
        self,
        amount: int,
        currency: str,
        product_name: str,
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
    ) -> ProviderSession:
        params = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": {"name": product_name},
                        "unit_amount": amount,
                    },
                    "quantity": 1,
                }
            ],
            "metadata": metadata,
            # The intent behind the session must carry the same metadata,
            # otherwise the payment_intent.succeeded webhook cannot be matched.
            "payment_intent_data": {"metadata": metadata},
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        session = await self._invoke(
            "create_session", "checkout session", self.client.v1.checkout.sessions.create_async, params=params
        )
        logger.info(
            "Stripe checkout session %s created: amount=%d %s application=%s",
            session.get("id"),
            amount,
            currency,
            metadata.get("applicationId"),
        )
        return to_session(session)

    async def retrieve_session(self, session_ref: str) -> ProviderSession:
        session = await self._invoke(
            "retrieve_session",
            "checkout session",
            self.client.v1.checkout.sessions.retrieve_async,
            session_ref,
            params={"expand": ["payment_intent"]},
        )
        return to_session(session)

    def construct_event(self, payload: bytes, signature: Optional[str]) -> ProviderEvent:
        if not self.webhook_secret:
            raise PaymentNotConfiguredError("Webhook verification is not configured on this server.")
        if not signature:
            raise ValidationError("Missing Stripe-Signature header", field="Stripe-Signature")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning("Webhook signature verification failed: %s", str(e))
            raise ValidationError("Invalid webhook signature", field="Stripe-Signature")
        except ValueError as e:
            logger.warning("Webhook payload is not valid JSON: %s", str(e))
            raise ValidationError("Malformed webhook payload")

        data_object = event["data"]["object"]
        return ProviderEvent(
            id=event.get("id"),
            type=event.get("type"),
            object_id=data_object.get("id"),
            data=dict(data_object),
        )

    # ── Call wrapper ──────────────────────────────────────────────────────

    async def _invoke(self, operation: str, resource: str, fn, *args, **kwargs):
        """
        Runs one Stripe call through the circuit breaker and the retry loop
        and translates its errors.
        """
        self.circuit_breaker.can_execute()
        start_time = time.time()
        try:
            result = await self._call_with_retry(operation, fn, *args, **kwargs)
        except stripe.InvalidRequestError as e:
            # Stripe answered; the request itself was wrong.
            self.circuit_breaker.record_success()
            if e.code == "resource_missing":
                raise NotFoundError(resource=resource, context={"stripe_message": e.user_message})
            logger.warning("Stripe rejected %s: %s", operation, str(e))
            raise PaymentProviderError(
                message=f"The payment provider rejected the request: {e.user_message or 'invalid request'}",
                retryable=False,
                context={"operation": operation, "code": e.code},
            )
        except (stripe.AuthenticationError, stripe.PermissionError) as e:
            self.circuit_breaker.record_failure()
            logger.error("Stripe credentials rejected during %s: %s", operation, str(e))
            raise PaymentProviderError(
                message="The payment provider refused our credentials.",
                retryable=False,
                context={"operation": operation},
            )
        except TRANSIENT_ERRORS as e:
            self.circuit_breaker.record_failure()
            logger.error(
                "Stripe %s failed after %d attempts: %s",
                operation,
                settings.retry_max_attempts,
                str(e),
            )
            raise PaymentProviderError(
                context={"operation": operation, "error_type": type(e).__name__},
            )
        except stripe.StripeError as e:
            self.circuit_breaker.record_failure()
            logger.error("Stripe %s failed: %s", operation, str(e), exc_info=True)
            raise PaymentProviderError(
                context={"operation": operation, "error_type": type(e).__name__},
            )

        self.circuit_breaker.record_success()
        logger.debug("Stripe %s completed in %.0fms", operation, (time.time() - start_time) * 1000)
        return result

    @retry(
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        stop=stop_after_attempt(settings.retry_max_attempts),
        # wait = min(max_wait, min_wait * 2^attempt) + random(0, 1)
        wait=wait_exponential_jitter(
            initial=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=1,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _call_with_retry(self, operation: str, fn, *args, **kwargs):
        return await fn(*args, **kwargs)


stripe_service = StripeService()


def get_payment_provider() -> PaymentProvider:
    """FastAPI dependency; tests override it with an in-memory provider."""
    return stripe_service
