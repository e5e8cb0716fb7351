"""
ScholarStream Backend - Application Request/Response Schemas
==============================================================

What:  API contract for the /api/applications endpoints.

Request bodies are narrow, one per action:
    ApplicationCreate   { scholarshipId }
    StatusUpdate        { applicationStatus }
    FeedbackUpdate      { feedback }
    PaymentUpdate       { paymentIntentId }   (routes through reconciliation)

There is deliberately no schema carrying ``paymentStatus`` as input.

Identifiers in bodies are plain strings; the services parse them and report a
malformed value as "not found", the same as a path parameter.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import Field

from scholarstream.models.application import ApplicationStatus, PaymentStatus
from scholarstream.schemas.common import CamelModel, UpdateModel


class ApplicationCreate(UpdateModel):
    scholarship_id: str = Field(min_length=1, description="Scholarship to apply for")


class StatusUpdate(UpdateModel):
    application_status: ApplicationStatus


class FeedbackUpdate(UpdateModel):
    feedback: str = Field(max_length=2000)


class PaymentUpdate(UpdateModel):
    payment_intent_id: str = Field(min_length=1, description="Provider intent reference")


class ApplicationResponse(CamelModel):
    id: uuid.UUID
    scholarship_id: uuid.UUID
    user_id: uuid.UUID
    user_name: str
    user_email: str
    university_name: str
    scholarship_category: str
    degree: str
    application_fees: float
    service_charge: float
    application_status: ApplicationStatus
    payment_status: PaymentStatus
    feedback: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ApplicationEnvelope(CamelModel):
    message: str
    application: ApplicationResponse


class ApplicationList(CamelModel):
    applications: List[ApplicationResponse]
    total_count: int
