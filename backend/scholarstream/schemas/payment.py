"""
ScholarStream Backend - Payment Schemas
=========================================

What:  Request/response shapes for /api/payment and the webhook acknowledgement.
"""

from typing import Optional

from pydantic import Field

from scholarstream.schemas.application import ApplicationResponse
from scholarstream.schemas.common import CamelModel, UpdateModel


class PaymentIntentRequest(UpdateModel):
    application_id: str = Field(min_length=1)


class PaymentIntentResponse(CamelModel):
    client_secret: str
    payment_intent_id: str
    amount: int = Field(description="Charge in minor currency units")
    currency: str


class PaymentSuccessRequest(UpdateModel):
    application_id: str = Field(min_length=1)
    payment_intent_id: str = Field(min_length=1)


class CheckoutSessionRequest(UpdateModel):
    application_id: str = Field(min_length=1)


class CheckoutSessionResponse(CamelModel):
    url: str
    id: str


class PaymentConfirmationResponse(CamelModel):
    """
    Result of a confirmation call.

    ``already_paid`` is True when the application was paid before this call;
    the call itself changed nothing.
    """
    success: bool = True
    message: str
    already_paid: bool
    application: ApplicationResponse


class WebhookAck(CamelModel):
    received: bool = True
    outcome: str
    detail: Optional[str] = None


class PaymentStatusResponse(CamelModel):
    stripe_configured: bool
    webhook_configured: bool
