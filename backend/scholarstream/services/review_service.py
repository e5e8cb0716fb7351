"""
ScholarStream Backend - Review Service
========================================

What:  Creates and lists scholarship reviews.
Who:   Called by the reviews router.

Rules:
    - Only a user whose application for the scholarship is *completed* may
      review it (400 otherwise)
    - One review per (user, scholarship); a second one is a 409, whether
      caught by the pre-check or by the unique constraint
    - Reviewer name/email/photo and the university name are snapshotted at
      creation, like application snapshots
"""

import logging
import uuid
from typing import List

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from scholarstream.exceptions import ConflictError, DatabaseError, ValidationError
from scholarstream.models.application import Application, ApplicationStatus
from scholarstream.models.review import Review
from scholarstream.services.application_store import parse_id
from scholarstream.services.identity import Actor

logger = logging.getLogger(__name__)


class ReviewService:

    async def create_review(
        self,
        db: AsyncSession,
        actor: Actor,
        scholarship_ref,
        rating_point: int,
        review_comment: str,
    ) -> Review:
        scholarship_id = parse_id(scholarship_ref, "scholarship")

        try:
            completed = (
                await db.execute(
                    select(Application).where(
                        Application.user_id == actor.id,
                        Application.scholarship_id == scholarship_id,
                        Application.application_status == ApplicationStatus.COMPLETED,
                    )
                )
            ).scalar_one_or_none()
            existing = (
                await db.execute(
                    select(Review.id).where(
                        Review.user_id == actor.id,
                        Review.scholarship_id == scholarship_id,
                    )
                )
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Database error checking review eligibility: %s", str(e), exc_info=True)
            raise DatabaseError(context={"scholarship_id": str(scholarship_id)})

        if completed is None:
            raise ValidationError(
                "You can only review scholarships you have completed applications for",
                field="scholarshipId",
            )
        if existing is not None:
            raise ConflictError("You have already reviewed this scholarship")

        review = Review(
            id=uuid.uuid4(),
            scholarship_id=scholarship_id,
            user_id=actor.id,
            university_name=completed.university_name,
            user_name=actor.name,
            user_email=actor.email,
            user_image=actor.photo_url,
            rating_point=rating_point,
            review_comment=review_comment,
        )
        db.add(review)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            raise ConflictError("You have already reviewed this scholarship")
        except SQLAlchemyError as e:
            logger.error("Database error creating review: %s", str(e), exc_info=True)
            raise DatabaseError()

        logger.info("Review %s created: user=%s scholarship=%s", review.id, actor.id, scholarship_id)
        return review

    async def list_for_scholarship(self, db: AsyncSession, scholarship_ref) -> List[Review]:
        """Newest first. An unknown scholarship simply has no reviews."""
        scholarship_id = parse_id(scholarship_ref, "scholarship")
        try:
            result = await db.execute(
                select(Review)
                .where(Review.scholarship_id == scholarship_id)
                .order_by(Review.review_date.desc())
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Database error listing reviews: %s", str(e), exc_info=True)
            raise DatabaseError(context={"scholarship_id": str(scholarship_id)})


review_service = ReviewService()
