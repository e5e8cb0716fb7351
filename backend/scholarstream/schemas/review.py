"""ScholarStream Backend - Review Schemas."""

import uuid
from datetime import datetime
from typing import List

from pydantic import Field

from scholarstream.schemas.common import CamelModel, UpdateModel


class ReviewCreate(UpdateModel):
    scholarship_id: str = Field(min_length=1)
    rating_point: int = Field(ge=1, le=5)
    review_comment: str = Field(min_length=1, max_length=2000)


class ReviewResponse(CamelModel):
    id: uuid.UUID
    scholarship_id: uuid.UUID
    university_name: str
    user_name: str
    user_email: str
    user_image: str
    rating_point: int
    review_comment: str
    review_date: datetime


class ReviewEnvelope(CamelModel):
    message: str
    review: ReviewResponse


class ReviewList(CamelModel):
    reviews: List[ReviewResponse]
