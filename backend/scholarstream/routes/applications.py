"""
ScholarStream Backend - Application Route Handlers
====================================================

What:  /api/applications: apply, read, moderate, pay and delete.
How:   Each handler resolves the actor, calls ApplicationLifecycle (or the
       PaymentReconciler for the payment PATCH) and wraps the result.

    POST   /api/applications                   Student+     apply
    GET    /api/applications/mine              any          own applications
    GET    /api/applications                   Moderator+   moderation list
    GET    /api/applications/{id}              owner/Mod+   one application
    PATCH  /api/applications/{id}/status       Moderator+   status transition
    PATCH  /api/applications/{id}/feedback     Moderator+   feedback text
    PATCH  /api/applications/{id}/payment      owner/Mod+   confirm payment intent
    DELETE /api/applications/{id}              owner (pending) / Admin

``/mine`` is declared before ``/{id}`` so it is not captured as an id.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from scholarstream.database import get_db_session
from scholarstream.models.application import Application, ApplicationStatus, PaymentStatus
from scholarstream.schemas.application import (
    ApplicationCreate,
    ApplicationEnvelope,
    ApplicationList,
    ApplicationResponse,
    FeedbackUpdate,
    PaymentUpdate,
    StatusUpdate,
)
from scholarstream.schemas.common import ErrorResponse, MessageResponse
from scholarstream.schemas.payment import PaymentConfirmationResponse
from scholarstream.services.identity import Actor, get_current_actor
from scholarstream.services.lifecycle import application_lifecycle
from scholarstream.services.payment_provider import PaymentProvider
from scholarstream.services.payment_reconciler import payment_reconciler
from scholarstream.services.stripe_service import get_payment_provider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/applications", tags=["Applications"])

_ERRORS = {
    401: {"description": "Missing or invalid bearer token", "model": ErrorResponse},
    403: {"description": "Not allowed for this actor", "model": ErrorResponse},
    404: {"description": "Application not found", "model": ErrorResponse},
}


def _envelope(message: str, application: Application) -> ApplicationEnvelope:
    return ApplicationEnvelope(
        message=message,
        application=ApplicationResponse.model_validate(application),
    )


@router.post(
    "",
    response_model=ApplicationEnvelope,
    status_code=status.HTTP_201_CREATED,
    responses={**_ERRORS, 409: {"description": "Already applied", "model": ErrorResponse}},
    summary="Apply for a scholarship",
)
async def create_application(
    body: ApplicationCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
) -> ApplicationEnvelope:
    application = await application_lifecycle.create_application(db, actor, body.scholarship_id)
    return _envelope("Application submitted", application)


@router.get(
    "/mine",
    response_model=ApplicationList,
    responses={401: _ERRORS[401]},
    summary="List the caller's own applications",
)
async def list_my_applications(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
) -> ApplicationList:
    applications = await application_lifecycle.list_own(db, actor)
    return ApplicationList(
        applications=[ApplicationResponse.model_validate(a) for a in applications],
        total_count=len(applications),
    )


@router.get(
    "",
    response_model=ApplicationList,
    responses={401: _ERRORS[401], 403: _ERRORS[403]},
    summary="List all applications (Moderator/Admin)",
)
async def list_applications(
    response: Response,
    status_filter: Optional[ApplicationStatus] = Query(default=None, alias="status"),
    payment_status: Optional[PaymentStatus] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
) -> ApplicationList:
    applications, total = await application_lifecycle.list_all(
        db,
        actor,
        status=status_filter,
        payment_status=payment_status,
        limit=limit,
        offset=offset,
    )
    response.headers["X-Total-Count"] = str(total)
    return ApplicationList(
        applications=[ApplicationResponse.model_validate(a) for a in applications],
        total_count=total,
    )


@router.get(
    "/{application_id}",
    response_model=ApplicationResponse,
    responses=_ERRORS,
    summary="Get one application",
)
async def get_application(
    application_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
) -> ApplicationResponse:
    application = await application_lifecycle.get_application(db, actor, application_id)
    return ApplicationResponse.model_validate(application)


@router.patch(
    "/{application_id}/status",
    response_model=ApplicationEnvelope,
    responses={
        **_ERRORS,
        400: {"description": "Illegal status transition", "model": ErrorResponse},
        409: {"description": "Status changed concurrently", "model": ErrorResponse},
    },
    summary="Change application status (Moderator/Admin)",
)
async def update_status(
    application_id: str,
    body: StatusUpdate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
) -> ApplicationEnvelope:
    application = await application_lifecycle.set_status(
        db, actor, application_id, body.application_status
    )
    return _envelope("Status updated", application)


@router.patch(
    "/{application_id}/feedback",
    response_model=ApplicationEnvelope,
    responses=_ERRORS,
    summary="Set moderator feedback (Moderator/Admin)",
)
async def update_feedback(
    application_id: str,
    body: FeedbackUpdate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
) -> ApplicationEnvelope:
    application = await application_lifecycle.set_feedback(db, actor, application_id, body.feedback)
    return _envelope("Feedback added", application)


@router.patch(
    "/{application_id}/payment",
    response_model=PaymentConfirmationResponse,
    responses={
        **_ERRORS,
        400: {"description": "Payment not successful or not for this application", "model": ErrorResponse},
        502: {"description": "Payment provider failure", "model": ErrorResponse},
    },
    summary="Confirm payment with a provider intent reference",
    description=(
        "Marks the application paid only after the referenced intent is confirmed "
        "as succeeded with the provider and its metadata names this application."
    ),
)
async def update_payment(
    application_id: str,
    body: PaymentUpdate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> PaymentConfirmationResponse:
    transition = await payment_reconciler.confirm_intent(
        db, actor, provider, application_id, body.payment_intent_id, require_owner=False
    )
    return PaymentConfirmationResponse(
        message="Payment already recorded" if transition.already_paid else "Payment status updated",
        already_paid=transition.already_paid,
        application=ApplicationResponse.model_validate(transition.application),
    )


@router.delete(
    "/{application_id}",
    response_model=MessageResponse,
    responses={**_ERRORS, 400: {"description": "Application is no longer pending", "model": ErrorResponse}},
    summary="Delete an application",
)
async def delete_application(
    application_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    await application_lifecycle.delete_application(db, actor, application_id)
    return MessageResponse(message="Application deleted")
