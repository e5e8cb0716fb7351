"""
ScholarStream Backend - Scholarship Model
===========================================

What:  ORM model for the ``scholarships`` table.
Who:   Read by the lifecycle when an application is created (fee and category
       snapshot) and by the review service.

Fee columns are ``Numeric(10, 2)`` major units (dollars). Conversion to the
provider's minor units happens only in the payment reconciler.
"""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Integer, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from scholarstream.database import Base, utcnow


class Scholarship(Base):
    __tablename__ = "scholarships"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    scholarship_name: Mapped[str] = mapped_column(String(255), nullable=False)
    university_name: Mapped[str] = mapped_column(String(255), nullable=False)
    university_image: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    university_country: Mapped[str] = mapped_column(String(120), nullable=False)
    university_city: Mapped[str] = mapped_column(String(120), nullable=False)
    university_world_rank: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    subject_category: Mapped[str] = mapped_column(String(120), nullable=False)

    # 'Full fund' | 'Partial' | 'Self-fund'
    scholarship_category: Mapped[str] = mapped_column(String(50), nullable=False)

    # 'Diploma' | 'Bachelor' | 'Masters'
    degree: Mapped[str] = mapped_column(String(50), nullable=False)

    tuition_fees: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    application_fees: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    service_charge: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    application_deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    posted_user_email: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<Scholarship(id={self.id}, name='{self.scholarship_name}')>"
