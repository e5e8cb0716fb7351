"""
ScholarStream Backend - Payment Route Handlers
================================================

What:  /api/payment: the three payment entry points, checkout creation and
       the configuration check.

    POST /api/payment/create-payment-intent     owner      → clientSecret
    POST /api/payment/success                   owner      confirm an intent
    POST /api/payment/create-checkout-session   owner      → hosted checkout url
    GET  /api/payment/verify?session_id=...     owner      confirm a checkout
    GET  /api/payment/status                    public     provider configured?
    POST /api/payment/webhook                   signature  provider push

All confirmation paths end in PaymentReconciler and are idempotent: calling
them again after the application is paid returns ``alreadyPaid: true``.

The webhook reads the raw body; the signature is computed over the exact bytes
Stripe sent, so the body must not be parsed as JSON first.
"""

import logging

from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from scholarstream.database import get_db_session
from scholarstream.exceptions import ScholarStreamError
from scholarstream.schemas.application import ApplicationResponse
from scholarstream.schemas.common import ErrorResponse
from scholarstream.schemas.payment import (
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    PaymentConfirmationResponse,
    PaymentIntentRequest,
    PaymentIntentResponse,
    PaymentStatusResponse,
    PaymentSuccessRequest,
    WebhookAck,
)
from scholarstream.services.identity import Actor, get_current_actor
from scholarstream.services.lifecycle import PaymentTransition
from scholarstream.services.payment_provider import PaymentProvider
from scholarstream.services.payment_reconciler import payment_reconciler
from scholarstream.services.stripe_service import get_payment_provider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payment", tags=["Payment"])

_ERRORS = {
    400: {"description": "Payment not successful, mismatched or below minimum", "model": ErrorResponse},
    401: {"description": "Missing or invalid bearer token", "model": ErrorResponse},
    403: {"description": "Caller does not own the application", "model": ErrorResponse},
    404: {"description": "Application, intent or session not found", "model": ErrorResponse},
    502: {"description": "Payment provider failure", "model": ErrorResponse},
    503: {"description": "Payments not configured or provider circuit open", "model": ErrorResponse},
}


def _confirmation(transition: PaymentTransition, message: str) -> PaymentConfirmationResponse:
    return PaymentConfirmationResponse(
        message="Payment already recorded" if transition.already_paid else message,
        already_paid=transition.already_paid,
        application=ApplicationResponse.model_validate(transition.application),
    )


@router.post(
    "/create-payment-intent",
    response_model=PaymentIntentResponse,
    responses=_ERRORS,
    summary="Create a payment intent for an application's fees",
)
async def create_payment_intent(
    body: PaymentIntentRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> PaymentIntentResponse:
    intent = await payment_reconciler.create_payment_intent(db, actor, provider, body.application_id)
    return PaymentIntentResponse(
        client_secret=intent.client_secret or "",
        payment_intent_id=intent.id,
        amount=intent.amount or 0,
        currency=intent.currency or "",
    )


@router.post(
    "/success",
    response_model=PaymentConfirmationResponse,
    responses=_ERRORS,
    summary="Confirm a succeeded payment intent",
)
async def payment_success(
    body: PaymentSuccessRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> PaymentConfirmationResponse:
    transition = await payment_reconciler.confirm_intent(
        db, actor, provider, body.application_id, body.payment_intent_id
    )
    return _confirmation(transition, "Payment successful")


@router.post(
    "/create-checkout-session",
    response_model=CheckoutSessionResponse,
    responses=_ERRORS,
    summary="Create a hosted checkout session",
)
async def create_checkout_session(
    body: CheckoutSessionRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> CheckoutSessionResponse:
    session = await payment_reconciler.create_checkout_session(db, actor, provider, body.application_id)
    return CheckoutSessionResponse(url=session.url or "", id=session.id)


@router.get(
    "/verify",
    response_model=PaymentConfirmationResponse,
    responses=_ERRORS,
    summary="Verify a hosted checkout session after redirect",
)
async def verify_checkout_session(
    session_id: str = Query(min_length=1, description="Checkout session reference from the redirect"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> PaymentConfirmationResponse:
    transition = await payment_reconciler.verify_session(db, actor, provider, session_id)
    return _confirmation(transition, "Payment verified")


@router.get(
    "/status",
    response_model=PaymentStatusResponse,
    summary="Report whether payments are configured",
)
async def payment_status(
    provider: PaymentProvider = Depends(get_payment_provider),
) -> PaymentStatusResponse:
    return PaymentStatusResponse(
        stripe_configured=provider.configured,
        webhook_configured=provider.webhook_configured,
    )


@router.post(
    "/webhook",
    response_model=WebhookAck,
    responses={
        400: {"description": "Invalid signature or payload", "model": ErrorResponse},
        502: {"description": "Provider unreachable; will be redelivered", "model": ErrorResponse},
        503: {"description": "Webhook secret not configured or circuit open", "model": ErrorResponse},
    },
    summary="Payment provider webhook",
    description=(
        "Signature-verified. Handled events: payment_intent.succeeded and "
        "checkout.session.completed. Permanent problems are acknowledged with "
        "outcome 'ignored'; transient ones return non-2xx so the provider retries."
    ),
)
async def payment_webhook(
    request: Request,
    stripe_signature: str = Header(default="", alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_db_session),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> WebhookAck:
    payload = await request.body()
    try:
        outcome = await payment_reconciler.handle_webhook(db, provider, payload, stripe_signature or None)
    except ScholarStreamError as e:
        logger.warning("Webhook delivery rejected (%s): %s", type(e).__name__, e.message)
        raise
    return WebhookAck(outcome=outcome.outcome, detail=outcome.detail)
