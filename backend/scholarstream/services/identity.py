"""
ScholarStream Backend - Identity Resolver
===========================================

What:  Turns a bearer credential into an ``Actor`` (id, name, email, role).
How:   Verifies an HS256 JWT with python-jose, reads the user UUID from the
       ``sub`` claim, and loads the user row so the role is always current
       (a demoted moderator loses access on their next request, not when the
       token expires).
Who:   ``get_current_actor`` / ``require_role`` are FastAPI dependencies used
       by every authenticated route.

Failure modes, all → AuthenticationError (401):
    no Authorization header, non-bearer scheme, bad signature, expired token,
    missing/malformed ``sub``, user no longer exists.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from scholarstream.config import settings
from scholarstream.database import get_db_session
from scholarstream.exceptions import AuthenticationError, ForbiddenError
from scholarstream.models.user import Role, User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """The authenticated caller, detached from the ORM session."""

    id: uuid.UUID
    name: str
    email: str
    role: Role
    photo_url: str = ""

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role,
            photo_url=user.photo_url or "",
        )


class IdentityResolver:
    """Verifies bearer tokens and resolves them to actors."""

    def __init__(self, secret: Optional[str] = None, algorithm: Optional[str] = None):
        self.secret = settings.jwt_secret if secret is None else secret
        self.algorithm = algorithm or settings.jwt_algorithm

    def decode_subject(self, token: str) -> uuid.UUID:
        """Returns the user UUID carried in the token's ``sub`` claim."""
        if not self.secret:
            logger.error("JWT_SECRET is not configured; rejecting bearer token")
            raise AuthenticationError("Authentication is not configured")
        try:
            claims = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError as e:
            raise AuthenticationError("Invalid token", context={"reason": str(e)})

        subject = claims.get("sub")
        if not subject:
            raise AuthenticationError("Invalid token", context={"reason": "missing sub"})
        try:
            return uuid.UUID(str(subject))
        except ValueError:
            raise AuthenticationError("Invalid user ID", context={"sub": str(subject)[:64]})

    async def resolve(self, db: AsyncSession, token: str) -> Actor:
        user_id = self.decode_subject(token)
        result = await db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if user is None:
            raise AuthenticationError("User not found", context={"user_id": str(user_id)})
        return Actor.from_user(user)

    def issue(self, user_id: uuid.UUID, expires_in: timedelta = timedelta(days=1)) -> str:
        """
        Signs a token for ``user_id`` with the shared secret.

        Production tokens are issued by the external identity provider; this
        mints equivalent ones for the test suite.
        """
        now = datetime.now(timezone.utc)
        claims = {"sub": str(user_id), "iat": now, "exp": now + expires_in}
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)


identity_resolver = IdentityResolver()

_bearer = HTTPBearer(auto_error=False)


async def get_current_actor(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    db: AsyncSession = Depends(get_db_session),
) -> Actor:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthenticationError("No token provided")
    actor = await identity_resolver.resolve(db, credentials.credentials)
    # Read by RequestLoggingMiddleware for the access log line
    request.state.user_id = str(actor.id)
    return actor


def require_role(minimum: Role):
    """Dependency factory: the caller must hold ``minimum`` or a higher role."""

    async def role_dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if not actor.role.at_least(minimum):
            raise ForbiddenError(
                message=f"{minimum.value} access required",
                context={"actor_id": str(actor.id), "role": actor.role.value},
            )
        return actor

    return role_dependency
