"""
ScholarStream Backend - Application Model
===========================================

What:  ORM model for the ``applications`` table plus its two status enums.
Who:   Owned by ApplicationStore; every write goes through the lifecycle or
       the payment reconciler.

Two orthogonal state axes:
    application_status   pending → processing → completed
                         pending | processing → rejected
    payment_status       unpaid → paid (once, never back)

Snapshot columns (owner name/email, university, category, degree, fees) are
copied from the user and scholarship at creation time and never re-synced, so
a later scholarship edit does not change what an applicant was charged.

Constraints:
    uq_applications_user_scholarship   one application per (user, scholarship)
    idx_applications_created_at        newest-first listings
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from scholarstream.database import Base, utcnow


class ApplicationStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    REJECTED = "rejected"


class PaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PAID = "paid"


def _enum_column(enum_cls, name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=20,
        values_callable=lambda e: [m.value for m in e],
    )


class Application(Base):
    __tablename__ = "applications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    scholarship_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("scholarships.id"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # ── Snapshot ──────────────────────────────────────────────────────────
    user_name: Mapped[str] = mapped_column(String(120), nullable=False)
    user_email: Mapped[str] = mapped_column(String(255), nullable=False)
    university_name: Mapped[str] = mapped_column(String(255), nullable=False)
    scholarship_category: Mapped[str] = mapped_column(String(50), nullable=False)
    degree: Mapped[str] = mapped_column(String(50), nullable=False)
    application_fees: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    service_charge: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    # ── State ─────────────────────────────────────────────────────────────
    application_status: Mapped[ApplicationStatus] = mapped_column(
        _enum_column(ApplicationStatus, "application_status"),
        nullable=False,
        default=ApplicationStatus.PENDING,
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum_column(PaymentStatus, "payment_status"),
        nullable=False,
        default=PaymentStatus.UNPAID,
    )
    feedback: Mapped[Optional[str]] = mapped_column(Text, nullable=True, default=None)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        UniqueConstraint("user_id", "scholarship_id", name="uq_applications_user_scholarship"),
        Index("idx_applications_created_at", created_at.desc()),
    )

    @property
    def total_charge(self) -> Decimal:
        """Fees + service charge in major units (dollars)."""
        return Decimal(self.application_fees) + Decimal(self.service_charge)

    def __repr__(self) -> str:
        return (
            f"<Application(id={self.id}, status='{self.application_status.value}', "
            f"payment='{self.payment_status.value}')>"
        )
