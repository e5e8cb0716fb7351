"""
ScholarStream Backend - User Route Handlers
=============================================

    GET    /api/users               every user, newest first (Admin)
    GET    /api/users/me            the caller's profile
    GET    /api/users/{id}          one profile (self or Admin)
    PATCH  /api/users/{id}          name / photoUrl only (self or Admin)
    PATCH  /api/users/{id}/role     role only (Admin)
    DELETE /api/users/{id}          user plus their applications and reviews (Admin)

Both PATCH bodies reject unknown fields with 422, so a profile edit can never
carry ``role`` and a role change can never carry anything else.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from scholarstream.database import get_db_session
from scholarstream.models.user import Role
from scholarstream.schemas.common import ErrorResponse, MessageResponse
from scholarstream.schemas.user import ProfileUpdate, RoleUpdate, UserEnvelope, UserList, UserResponse
from scholarstream.services.identity import Actor, get_current_actor, require_role
from scholarstream.services.user_service import user_service

router = APIRouter(prefix="/api/users", tags=["Users"])

_ERRORS = {
    401: {"description": "Missing or invalid bearer token", "model": ErrorResponse},
    403: {"description": "Not allowed for this actor", "model": ErrorResponse},
    404: {"description": "User not found", "model": ErrorResponse},
}


@router.get(
    "",
    response_model=UserList,
    responses={401: _ERRORS[401], 403: _ERRORS[403]},
    summary="List users (Admin)",
)
async def list_users(
    role: Optional[Role] = Query(default=None),
    actor: Actor = Depends(require_role(Role.ADMIN)),
    db: AsyncSession = Depends(get_db_session),
) -> UserList:
    users = await user_service.list_users(db, actor, role)
    return UserList(users=[UserResponse.model_validate(u) for u in users], total_count=len(users))


@router.get("/me", response_model=UserResponse, responses={401: _ERRORS[401]})
async def get_me(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
) -> UserResponse:
    user = await user_service.get_user(db, actor.id)
    return UserResponse.model_validate(user)


@router.get("/{user_id}", response_model=UserResponse, responses=_ERRORS)
async def get_user(
    user_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
) -> UserResponse:
    user = await user_service.get_user_for(db, actor, user_id)
    return UserResponse.model_validate(user)


@router.patch("/{user_id}", response_model=UserEnvelope, responses=_ERRORS)
async def update_profile(
    user_id: str,
    body: ProfileUpdate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
) -> UserEnvelope:
    changes = body.model_dump(exclude_unset=True)
    user = await user_service.update_profile(db, actor, user_id, changes)
    return UserEnvelope(message="Profile updated", user=UserResponse.model_validate(user))


@router.patch("/{user_id}/role", response_model=UserEnvelope, responses=_ERRORS)
async def update_role(
    user_id: str,
    body: RoleUpdate,
    actor: Actor = Depends(require_role(Role.ADMIN)),
    db: AsyncSession = Depends(get_db_session),
) -> UserEnvelope:
    user = await user_service.set_role(db, actor, user_id, body.role)
    return UserEnvelope(message="Role updated", user=UserResponse.model_validate(user))


@router.delete("/{user_id}", response_model=MessageResponse, responses=_ERRORS, summary="Delete a user (Admin)")
async def delete_user(
    user_id: str,
    actor: Actor = Depends(require_role(Role.ADMIN)),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    await user_service.delete_user(db, actor, user_id)
    return MessageResponse(message="User deleted")
