"""
ScholarStream Backend - Review Model
======================================

What:  ORM model for the ``reviews`` table.

A review may only be written by a user holding a *completed* application for
the scholarship (checked by ReviewService); the unique constraint backs the
one-review-per-(user, scholarship) rule.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from scholarstream.database import Base, utcnow


class Review(Base):
    __tablename__ = "reviews"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    scholarship_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("scholarships.id"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    university_name: Mapped[str] = mapped_column(String(255), nullable=False)
    user_name: Mapped[str] = mapped_column(String(120), nullable=False)
    user_email: Mapped[str] = mapped_column(String(255), nullable=False)
    user_image: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    rating_point: Mapped[int] = mapped_column(Integer, nullable=False)
    review_comment: Mapped[str] = mapped_column(Text, nullable=False)
    review_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        UniqueConstraint("user_id", "scholarship_id", name="uq_reviews_user_scholarship"),
        CheckConstraint("rating_point BETWEEN 1 AND 5", name="ck_reviews_rating_range"),
    )

    def __repr__(self) -> str:
        return f"<Review(id={self.id}, rating={self.rating_point})>"
