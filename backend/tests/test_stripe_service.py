"""
ScholarStream Backend - Stripe Service Unit Tests (Mocked)
============================================================

What:  Tests for StripeService with a mocked ``stripe.StripeClient``.
Why:   Tests should not make real API calls (requires keys and network).
How:   Injects a MagicMock client whose async methods return plain dicts or
       raise Stripe SDK exceptions.

What we test:
    ✅ Circuit breaker state machine
    ✅ Stripe objects converted into provider-neutral dataclasses
    ✅ Error translation (missing resource, rejected request, transient failures)
    ✅ Transient failures are retried, then trip the circuit breaker
    ✅ Webhook signature verification
    ❌ Real API calls
"""

import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import stripe
from tenacity import wait_none

from scholarstream.config import settings
from scholarstream.exceptions import (
    CircuitBreakerOpenError,
    NotFoundError,
    PaymentNotConfiguredError,
    PaymentProviderError,
    ValidationError,
)
from scholarstream.services.stripe_service import CircuitBreaker, StripeService, to_session


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(StripeService._call_with_retry.retry, "wait", wait_none())


def make_service(client=None, webhook_secret="whsec_test"):
    return StripeService(api_key="sk_test_123", webhook_secret=webhook_secret, client=client or MagicMock())


class TestCircuitBreaker:
    """Tests for the CircuitBreaker resilience pattern."""

    def test_initial_state_is_closed(self):
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        assert cb.state == "closed"
        assert cb.failure_count == 0

    def test_stays_closed_under_threshold(self):
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        for _ in range(4):
            cb.record_failure()
        assert cb.state == "closed"
        assert cb.can_execute() is True

    def test_open_circuit_rejects_calls(self):
        cb = CircuitBreaker(failure_threshold=2, recovery_timeout=60)
        cb.record_failure()
        cb.record_failure()
        assert cb.state == "open"

        with pytest.raises(CircuitBreakerOpenError) as exc_info:
            cb.can_execute()
        assert 1 <= exc_info.value.recovery_time <= 60

    def test_half_open_after_recovery_timeout(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        cb.record_failure()
        time.sleep(0.01)

        assert cb.can_execute() is True
        assert cb.state == "half_open"

    def test_failed_trial_call_reopens(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        cb.record_failure()
        cb.can_execute()

        cb.record_failure()
        assert cb.state == "open"

    def test_success_resets(self):
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        cb.record_failure()
        cb.record_failure()

        cb.record_success()
        assert cb.failure_count == 0
        assert cb.state == "closed"


class TestConversion:

    def test_session_with_expanded_intent(self):
        session = to_session(
            {
                "id": "cs_1",
                "url": "https://checkout.stripe.com/c/cs_1",
                "metadata": {"applicationId": "abc"},
                "payment_intent": {"id": "pi_1", "status": "succeeded", "metadata": {}},
            }
        )
        assert session.payment_intent_id == "pi_1"
        assert session.payment_intent.succeeded
        assert session.application_ref == "abc"

    def test_session_with_intent_id_only(self):
        session = to_session({"id": "cs_2", "payment_intent": "pi_2", "metadata": None})
        assert session.payment_intent is None
        assert session.payment_intent_id == "pi_2"
        assert session.metadata == {}


class TestStripeServiceMocked:

    @pytest.mark.asyncio
    async def test_create_intent_passes_amount_and_metadata(self):
        # Only the v1 namespace exists; the deprecated top-level accessors would raise
        client = MagicMock(spec=["v1"])
        client.v1.payment_intents.create_async = AsyncMock(
            return_value={
                "id": "pi_1",
                "status": "requires_payment_method",
                "amount": 1500,
                "currency": "usd",
                "client_secret": "pi_1_secret",
                "metadata": {"applicationId": "app-1", "userId": "user-1"},
            }
        )
        service = make_service(client)

        intent = await service.create_intent(1500, "usd", {"applicationId": "app-1", "userId": "user-1"})

        assert intent.id == "pi_1"
        assert intent.client_secret == "pi_1_secret"
        assert intent.application_ref == "app-1"
        params = client.v1.payment_intents.create_async.call_args.kwargs["params"]
        assert params["amount"] == 1500
        assert params["metadata"] == {"applicationId": "app-1", "userId": "user-1"}

    @pytest.mark.asyncio
    async def test_checkout_session_metadata_reaches_the_intent(self):
        client = MagicMock(spec=["v1"])
        client.v1.checkout.sessions.create_async = AsyncMock(
            return_value={"id": "cs_1", "url": "https://checkout.stripe.com/c/cs_1", "metadata": {}}
        )
        service = make_service(client)
        metadata = {"applicationId": "app-1", "userId": "user-1"}

        session = await service.create_session(1500, "usd", "Test Award", metadata, "https://s", "https://c")

        assert session.url == "https://checkout.stripe.com/c/cs_1"
        params = client.v1.checkout.sessions.create_async.call_args.kwargs["params"]
        assert params["payment_intent_data"] == {"metadata": metadata}
        assert params["line_items"][0]["price_data"]["unit_amount"] == 1500

    @pytest.mark.asyncio
    async def test_missing_resource_is_not_found(self):
        client = MagicMock()
        client.v1.payment_intents.retrieve_async = AsyncMock(
            side_effect=stripe.InvalidRequestError("No such payment_intent: 'pi_x'", "intent", code="resource_missing")
        )
        service = make_service(client)

        with pytest.raises(NotFoundError, match="Payment intent not found"):
            await service.retrieve_intent("pi_x")
        assert service.circuit_breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_other_invalid_request_is_not_retryable(self):
        client = MagicMock()
        client.v1.payment_intents.create_async = AsyncMock(
            side_effect=stripe.InvalidRequestError("Amount too small", "amount", code="amount_too_small")
        )
        service = make_service(client)

        with pytest.raises(PaymentProviderError) as exc_info:
            await service.create_intent(10, "usd", {})
        assert exc_info.value.retryable is False
        assert client.v1.payment_intents.create_async.await_count == 1

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried_then_reported(self):
        client = MagicMock()
        client.v1.payment_intents.retrieve_async = AsyncMock(side_effect=stripe.APIConnectionError("connection reset"))
        service = make_service(client)

        with pytest.raises(PaymentProviderError) as exc_info:
            await service.retrieve_intent("pi_1")

        assert exc_info.value.retryable is True
        assert client.v1.payment_intents.retrieve_async.await_count == settings.retry_max_attempts
        assert service.circuit_breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_transient_failure_then_success(self):
        client = MagicMock()
        client.v1.payment_intents.retrieve_async = AsyncMock(
            side_effect=[stripe.RateLimitError("slow down"), {"id": "pi_1", "status": "succeeded", "metadata": {}}]
        )
        service = make_service(client)

        intent = await service.retrieve_intent("pi_1")
        assert intent.succeeded
        assert service.circuit_breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_circuit_opens_after_repeated_failures(self):
        client = MagicMock()
        client.v1.payment_intents.retrieve_async = AsyncMock(side_effect=stripe.APIError("internal error"))
        service = make_service(client)

        for _ in range(service.circuit_breaker.failure_threshold):
            with pytest.raises(PaymentProviderError):
                await service.retrieve_intent("pi_1")

        calls_before = client.v1.payment_intents.retrieve_async.await_count
        with pytest.raises(CircuitBreakerOpenError):
            await service.retrieve_intent("pi_1")
        assert client.v1.payment_intents.retrieve_async.await_count == calls_before

    @pytest.mark.asyncio
    async def test_without_key_is_not_configured(self):
        service = StripeService(api_key="", webhook_secret="")

        assert service.configured is False
        with pytest.raises(PaymentNotConfiguredError):
            await service.retrieve_intent("pi_1")


class TestConstructEvent:

    def test_valid_event(self):
        service = make_service()
        event = {
            "id": "evt_1",
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": "pi_1", "status": "succeeded"}},
        }
        with patch("scholarstream.services.stripe_service.stripe.Webhook.construct_event", return_value=event):
            parsed = service.construct_event(b"{}", "t=1,v1=abc")

        assert parsed.id == "evt_1"
        assert parsed.type == "payment_intent.succeeded"
        assert parsed.object_id == "pi_1"

    def test_bad_signature(self):
        service = make_service()
        error = stripe.SignatureVerificationError("No signatures found", "t=1,v1=bad")
        with patch("scholarstream.services.stripe_service.stripe.Webhook.construct_event", side_effect=error):
            with pytest.raises(ValidationError, match="Invalid webhook signature"):
                service.construct_event(b"{}", "t=1,v1=bad")

    def test_missing_signature_header(self):
        with pytest.raises(ValidationError, match="Missing Stripe-Signature"):
            make_service().construct_event(b"{}", None)

    def test_without_webhook_secret(self):
        with pytest.raises(PaymentNotConfiguredError):
            make_service(webhook_secret="").construct_event(b"{}", "t=1,v1=abc")
