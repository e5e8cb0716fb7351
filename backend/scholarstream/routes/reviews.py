"""
ScholarStream Backend - Review Route Handlers
===============================================

    POST /api/reviews                        authenticated, completed application required
    GET  /api/reviews/scholarship/{id}       public, newest first
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from scholarstream.database import get_db_session
from scholarstream.schemas.common import ErrorResponse
from scholarstream.schemas.review import ReviewCreate, ReviewEnvelope, ReviewList, ReviewResponse
from scholarstream.services.identity import Actor, get_current_actor
from scholarstream.services.review_service import review_service

router = APIRouter(prefix="/api/reviews", tags=["Reviews"])


@router.post(
    "",
    response_model=ReviewEnvelope,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "No completed application for this scholarship", "model": ErrorResponse},
        401: {"description": "Missing or invalid bearer token", "model": ErrorResponse},
        409: {"description": "Already reviewed", "model": ErrorResponse},
    },
    summary="Review a scholarship",
)
async def create_review(
    body: ReviewCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
) -> ReviewEnvelope:
    review = await review_service.create_review(
        db, actor, body.scholarship_id, body.rating_point, body.review_comment
    )
    return ReviewEnvelope(message="Review created", review=ReviewResponse.model_validate(review))


@router.get(
    "/scholarship/{scholarship_id}",
    response_model=ReviewList,
    summary="List reviews for a scholarship",
)
async def list_scholarship_reviews(
    scholarship_id: str,
    db: AsyncSession = Depends(get_db_session),
) -> ReviewList:
    reviews = await review_service.list_for_scholarship(db, scholarship_id)
    return ReviewList(reviews=[ReviewResponse.model_validate(r) for r in reviews])
