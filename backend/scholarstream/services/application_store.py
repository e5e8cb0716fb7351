"""
ScholarStream Backend - Application Store
===========================================

What:  Data access for the ``applications`` table: lookups, listing, insert,
       delete and the conditional single-statement updates.
Who:   Used by ApplicationLifecycle and PaymentReconciler; never by routes.
How:   Stateless; every method receives the request's AsyncSession.

Atomic updates:
    Every state change is ONE ``UPDATE ... WHERE`` statement whose WHERE clause
    carries the precondition. The affected-row count says whether this call
    performed the change:

        mark_paid      WHERE id = :id AND payment_status <> 'paid'
        update_status  WHERE id = :id AND application_status = :expected

    Two concurrent reconciliations therefore cannot both observe "I moved it
    to paid"; exactly one gets rowcount 1.

Errors:
    Malformed identifiers   → NotFoundError (before any query runs)
    Unique violation        → ConflictError
    Other SQLAlchemy errors → DatabaseError (details logged)
"""

import logging
import uuid
from typing import List, Optional, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from scholarstream.database import utcnow
from scholarstream.exceptions import ConflictError, DatabaseError, NotFoundError
from scholarstream.models.application import Application, ApplicationStatus, PaymentStatus

logger = logging.getLogger(__name__)


def parse_id(value, resource: str = "resource") -> uuid.UUID:
    """
    Parse an identity reference, reporting a malformed one as not found.

    Accepts UUID instances and their string forms (with or without dashes).
    """
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value).strip())
    except (TypeError, ValueError, AttributeError):
        raise NotFoundError(resource=resource, resource_id=str(value)[:64])


class ApplicationStore:

    async def get(self, db: AsyncSession, application_id) -> Optional[Application]:
        """
        Fetch one application, bypassing the session's identity map so the
        result reflects any conditional UPDATE issued earlier in the request.
        """
        app_id = parse_id(application_id, "application")
        try:
            result = await db.execute(
                select(Application)
                .where(Application.id == app_id)
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise self._db_error("get", e, application_id=str(app_id))

    async def get_or_404(self, db: AsyncSession, application_id) -> Application:
        application = await self.get(db, application_id)
        if application is None:
            raise NotFoundError(resource="application", resource_id=str(application_id))
        return application

    async def find_by_pair(
        self, db: AsyncSession, user_id: uuid.UUID, scholarship_id: uuid.UUID
    ) -> Optional[Application]:
        try:
            result = await db.execute(
                select(Application).where(
                    Application.user_id == user_id,
                    Application.scholarship_id == scholarship_id,
                )
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise self._db_error("find_by_pair", e)

    async def list_for_user(self, db: AsyncSession, user_id: uuid.UUID) -> List[Application]:
        try:
            result = await db.execute(
                select(Application)
                .where(Application.user_id == user_id)
                .order_by(Application.created_at.desc())
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise self._db_error("list_for_user", e, user_id=str(user_id))

    async def list_all(
        self,
        db: AsyncSession,
        status: Optional[ApplicationStatus] = None,
        payment_status: Optional[PaymentStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Application], int]:
        """Moderation listing, newest first, with the total matching count."""
        filters = []
        if status is not None:
            filters.append(Application.application_status == status)
        if payment_status is not None:
            filters.append(Application.payment_status == payment_status)

        try:
            query = (
                select(Application)
                .where(*filters)
                .order_by(Application.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
            items = list((await db.execute(query)).scalars().all())
            total = (
                await db.execute(select(func.count(Application.id)).where(*filters))
            ).scalar() or 0
            return items, total
        except SQLAlchemyError as e:
            raise self._db_error("list_all", e)

    async def insert(self, db: AsyncSession, application: Application) -> Application:
        """
        Insert and flush. A unique-constraint hit (same user + scholarship,
        inserted concurrently) surfaces as ConflictError.
        """
        db.add(application)
        try:
            await db.flush()
        except IntegrityError as e:
            await db.rollback()
            logger.info(
                "Duplicate application rejected by constraint: user=%s scholarship=%s",
                application.user_id,
                application.scholarship_id,
            )
            raise ConflictError(
                message="Already applied for this scholarship",
                context={"constraint": str(e.orig)[:200]},
            )
        except SQLAlchemyError as e:
            raise self._db_error("insert", e)
        return application

    async def mark_paid(self, db: AsyncSession, application_id: uuid.UUID) -> bool:
        """
        unpaid → paid as a single conditional UPDATE.

        Returns True only for the call that performed the transition; False
        when the row was already paid (or does not exist).
        """
        stmt = (
            update(Application)
            .where(
                Application.id == application_id,
                Application.payment_status != PaymentStatus.PAID,
            )
            .values(payment_status=PaymentStatus.PAID, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return await self._execute_update("mark_paid", db, stmt, application_id)

    async def update_status(
        self,
        db: AsyncSession,
        application_id: uuid.UUID,
        expected: ApplicationStatus,
        new_status: ApplicationStatus,
    ) -> bool:
        """Optimistic status write: succeeds only if the status is still ``expected``."""
        stmt = (
            update(Application)
            .where(
                Application.id == application_id,
                Application.application_status == expected,
            )
            .values(application_status=new_status, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return await self._execute_update("update_status", db, stmt, application_id)

    async def set_feedback(
        self, db: AsyncSession, application_id: uuid.UUID, feedback: str
    ) -> bool:
        stmt = (
            update(Application)
            .where(Application.id == application_id)
            .values(feedback=feedback, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return await self._execute_update("set_feedback", db, stmt, application_id)

    async def delete(
        self,
        db: AsyncSession,
        application_id: uuid.UUID,
        expected: Optional[ApplicationStatus] = None,
    ) -> bool:
        """Delete the row; with ``expected``, only while it still has that status."""
        filters = [Application.id == application_id]
        if expected is not None:
            filters.append(Application.application_status == expected)
        stmt = (
            delete(Application)
            .where(*filters)
            .execution_options(synchronize_session=False)
        )
        return await self._execute_update("delete", db, stmt, application_id)

    async def _execute_update(self, operation: str, db: AsyncSession, stmt, application_id) -> bool:
        try:
            result = await db.execute(stmt)
        except SQLAlchemyError as e:
            raise self._db_error(operation, e, application_id=str(application_id))
        return result.rowcount == 1

    @staticmethod
    def _db_error(operation: str, exc: Exception, **context) -> DatabaseError:
        logger.error("Database error in %s: %s", operation, str(exc), exc_info=True)
        return DatabaseError(
            message="Could not access applications. Please try again.",
            context={"operation": operation, "error_type": type(exc).__name__, **context},
        )


application_store = ApplicationStore()
