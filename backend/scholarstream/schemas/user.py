"""
ScholarStream Backend - User Schemas
======================================

``UserResponse`` never includes ``password_hash``. ``ProfileUpdate`` and
``RoleUpdate`` are separate allow-lists: a profile edit cannot carry a role.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import Field

from scholarstream.models.user import Role
from scholarstream.schemas.common import CamelModel, UpdateModel


class UserResponse(CamelModel):
    id: uuid.UUID
    name: str
    email: str
    photo_url: str
    role: Role
    created_at: datetime


class UserEnvelope(CamelModel):
    message: str
    user: UserResponse


class UserList(CamelModel):
    users: List[UserResponse]
    total_count: int


class ProfileUpdate(UpdateModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    photo_url: Optional[str] = Field(default=None, max_length=500)


class RoleUpdate(UpdateModel):
    role: Role
