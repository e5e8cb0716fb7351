"""
ScholarStream Backend - User Model & Role Hierarchy
=====================================================

What:  ORM model for the ``users`` table and the closed ``Role`` enumeration.

Role hierarchy:
    Admin (rank 3) ⊇ Moderator (rank 2) ⊇ Student (rank 1)

    ``Role.at_least()`` is the only comparison the policy uses; roles are
    never compared as free strings.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from scholarstream.database import Base, utcnow


class Role(str, enum.Enum):
    STUDENT = "Student"
    MODERATOR = "Moderator"
    ADMIN = "Admin"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]

    def at_least(self, other: "Role") -> bool:
        """True when this role includes every permission of ``other``."""
        return self.rank >= other.rank


_ROLE_RANK = {
    Role.STUDENT: 1,
    Role.MODERATOR: 2,
    Role.ADMIN: 3,
}


class User(Base):
    """
    A marketplace account.

    ``password_hash`` is NULL for federated-identity accounts. ``role`` is
    changed only through the admin role endpoint.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    photo_url: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, default=None)
    role: Mapped[Role] = mapped_column(
        Enum(Role, name="user_role", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=Role.STUDENT,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}', role='{self.role.value}')>"
