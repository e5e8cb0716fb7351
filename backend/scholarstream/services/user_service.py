"""
ScholarStream Backend - User Service
======================================

What:  Profile reads, the two allow-listed user updates and admin user
       management.

    list_users       Admin only; newest first, optional role filter
    get_user_for     self or Admin; 404 before 403
    update_profile   name / photo_url only; self or Admin
    set_role         role only; Admin only (also enforced by the route)
    delete_user      Admin only; removes the user's applications and reviews

The update schemas forbid unknown fields, so neither path can write a column
outside its list.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from scholarstream.database import utcnow
from scholarstream.exceptions import DatabaseError, ForbiddenError, NotFoundError
from scholarstream.models.application import Application
from scholarstream.models.review import Review
from scholarstream.models.user import Role, User
from scholarstream.services.application_store import parse_id
from scholarstream.services.identity import Actor

logger = logging.getLogger(__name__)

PROFILE_FIELDS = frozenset({"name", "photo_url"})


def _require_admin(actor: Actor) -> None:
    if actor.role is not Role.ADMIN:
        raise ForbiddenError("Admin access required", context={"actor_id": str(actor.id)})


class UserService:

    async def list_users(
        self, db: AsyncSession, actor: Actor, role: Optional[Role] = None
    ) -> List[User]:
        _require_admin(actor)
        stmt = select(User).order_by(User.created_at.desc())
        if role is not None:
            stmt = stmt.where(User.role == role)
        try:
            return list((await db.execute(stmt)).scalars().all())
        except SQLAlchemyError as e:
            logger.error("Database error listing users: %s", str(e))
            raise DatabaseError(context={"operation": "list_users"})

    async def get_user(self, db: AsyncSession, user_ref) -> User:
        user_id = parse_id(user_ref, "user")
        try:
            user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Database error loading user %s: %s", user_id, str(e))
            raise DatabaseError(context={"user_id": str(user_id)})
        if user is None:
            raise NotFoundError(resource="user", resource_id=str(user_id))
        return user

    async def get_user_for(self, db: AsyncSession, actor: Actor, user_ref) -> User:
        user = await self.get_user(db, user_ref)
        if user.id != actor.id and actor.role is not Role.ADMIN:
            raise ForbiddenError(context={"actor_id": str(actor.id), "user_id": str(user.id)})
        return user

    async def update_profile(
        self, db: AsyncSession, actor: Actor, user_ref, changes: Dict[str, Any]
    ) -> User:
        user = await self.get_user_for(db, actor, user_ref)

        unknown = set(changes) - PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Not profile fields: {sorted(unknown)}")

        for field, value in changes.items():
            if value is not None:
                setattr(user, field, value)
        user.updated_at = utcnow()
        await self._flush(db, "update_profile")
        logger.info("User %s profile updated by %s: %s", user.id, actor.id, sorted(changes))
        return user

    async def set_role(self, db: AsyncSession, actor: Actor, user_ref, role: Role) -> User:
        _require_admin(actor)
        user = await self.get_user(db, user_ref)
        previous = user.role
        user.role = role
        user.updated_at = utcnow()
        await self._flush(db, "set_role")
        logger.info("User %s role %s → %s by %s", user.id, previous.value, role.value, actor.id)
        return user

    async def delete_user(self, db: AsyncSession, actor: Actor, user_ref) -> None:
        """
        Delete a user together with their applications and reviews.

        The child rows are removed explicitly rather than left to the foreign
        keys' ON DELETE CASCADE, which SQLite only honours with a pragma.
        """
        _require_admin(actor)
        user = await self.get_user(db, user_ref)
        try:
            for model in (Review, Application):
                await db.execute(
                    delete(model)
                    .where(model.user_id == user.id)
                    .execution_options(synchronize_session=False)
                )
            await db.delete(user)
        except SQLAlchemyError as e:
            logger.error("Database error deleting user %s: %s", user.id, str(e), exc_info=True)
            raise DatabaseError(context={"operation": "delete_user", "user_id": str(user.id)})
        await self._flush(db, "delete_user")
        logger.info("User %s deleted by %s", user.id, actor.id)

    @staticmethod
    async def _flush(db: AsyncSession, operation: str) -> None:
        try:
            await db.flush()
        except SQLAlchemyError as e:
            logger.error("Database error in %s: %s", operation, str(e), exc_info=True)
            raise DatabaseError(context={"operation": operation})


user_service = UserService()
