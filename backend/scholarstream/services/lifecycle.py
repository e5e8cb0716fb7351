"""
ScholarStream Backend - Application Lifecycle
===============================================

What:  The state machine over ``application_status`` and ``payment_status``,
       plus the create / read / delete workflows built on it.
Who:   Called by the applications router and by PaymentReconciler.

applicationStatus:

        ┌──────────┐      ┌────────────┐      ┌───────────┐
        │ pending  │─────▶│ processing │─────▶│ completed │ (terminal)
        └────┬─────┘      └─────┬──────┘      └───────────┘
             │                  │
             └───────┬──────────┘
                     ▼
               ┌──────────┐
               │ rejected │ (terminal)
               └──────────┘

    Setting the current status again is a no-op. Anything else not drawn
    above raises ValidationError.

paymentStatus:

    unpaid ──▶ paid, only through ``mark_paid`` (called by the reconciler).
    There is no generic setter.

Every mutation is one conditional UPDATE (see ApplicationStore), so no
request ever leaves an application half-updated.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from scholarstream.exceptions import ConflictError, DatabaseError, NotFoundError, ValidationError
from scholarstream.models.application import Application, ApplicationStatus, PaymentStatus
from scholarstream.models.scholarship import Scholarship
from scholarstream.models.user import Role
from scholarstream.services.application_store import ApplicationStore, application_store, parse_id
from scholarstream.services.authorization import Action, require
from scholarstream.services.identity import Actor

logger = logging.getLogger(__name__)


TRANSITIONS: Dict[ApplicationStatus, FrozenSet[ApplicationStatus]] = {
    ApplicationStatus.PENDING: frozenset({ApplicationStatus.PROCESSING, ApplicationStatus.REJECTED}),
    ApplicationStatus.PROCESSING: frozenset({ApplicationStatus.COMPLETED, ApplicationStatus.REJECTED}),
    ApplicationStatus.COMPLETED: frozenset(),
    ApplicationStatus.REJECTED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)


def can_transition(current: ApplicationStatus, target: ApplicationStatus) -> bool:
    return target in TRANSITIONS[current]


@dataclass(frozen=True)
class PaymentTransition:
    """Outcome of ``mark_paid``: the fresh row and whether this call moved it."""

    application: Application
    transitioned: bool

    @property
    def already_paid(self) -> bool:
        return not self.transitioned


class ApplicationLifecycle:
    """Stateless; receives the session per call like the rest of the services."""

    def __init__(self, store: Optional[ApplicationStore] = None):
        self.store = store or application_store

    # ── Reads ─────────────────────────────────────────────────────────────

    async def get_application(self, db: AsyncSession, actor: Actor, application_id) -> Application:
        """Existence first (404), then VIEW_ONE (403)."""
        application = await self.store.get_or_404(db, application_id)
        require(actor, application, Action.VIEW_ONE)
        return application

    async def list_own(self, db: AsyncSession, actor: Actor) -> List[Application]:
        require(actor, None, Action.VIEW_OWN)
        return await self.store.list_for_user(db, actor.id)

    async def list_all(
        self,
        db: AsyncSession,
        actor: Actor,
        status: Optional[ApplicationStatus] = None,
        payment_status: Optional[PaymentStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Application], int]:
        require(actor, None, Action.VIEW_ALL)
        return await self.store.list_all(
            db, status=status, payment_status=payment_status, limit=limit, offset=offset
        )

    # ── Create ────────────────────────────────────────────────────────────

    async def create_application(self, db: AsyncSession, actor: Actor, scholarship_ref) -> Application:
        """
        Apply ``actor`` to a scholarship.

        Steps:
            1. Resolve the scholarship (404 if absent or malformed)
            2. Reject a second application for the same pair (409)
            3. Snapshot owner + scholarship fields
            4. Insert as pending / unpaid
        """
        require(actor, None, Action.CREATE)
        scholarship_id = parse_id(scholarship_ref, "scholarship")

        try:
            scholarship = (
                await db.execute(select(Scholarship).where(Scholarship.id == scholarship_id))
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Database error loading scholarship %s: %s", scholarship_id, str(e))
            raise DatabaseError(context={"scholarship_id": str(scholarship_id)})
        if scholarship is None:
            raise NotFoundError(resource="scholarship", resource_id=str(scholarship_id))

        if await self.store.find_by_pair(db, actor.id, scholarship_id) is not None:
            raise ConflictError(
                message="Already applied for this scholarship",
                context={"user_id": str(actor.id), "scholarship_id": str(scholarship_id)},
            )

        application = Application(
            id=uuid.uuid4(),
            scholarship_id=scholarship.id,
            user_id=actor.id,
            user_name=actor.name,
            user_email=actor.email,
            university_name=scholarship.university_name,
            scholarship_category=scholarship.scholarship_category,
            degree=scholarship.degree,
            application_fees=scholarship.application_fees,
            service_charge=scholarship.service_charge,
            application_status=ApplicationStatus.PENDING,
            payment_status=PaymentStatus.UNPAID,
        )
        await self.store.insert(db, application)
        logger.info(
            "Application %s created: user=%s scholarship=%s",
            application.id,
            actor.id,
            scholarship_id,
        )
        return application

    # ── Moderation ────────────────────────────────────────────────────────

    async def set_status(
        self, db: AsyncSession, actor: Actor, application_id, target: ApplicationStatus
    ) -> Application:
        """
        Move ``application_status`` along the state machine.

        Raises:
            NotFoundError    application absent
            ForbiddenError   actor below Moderator
            ValidationError  illegal transition (including out of a terminal state)
            ConflictError    status changed between our read and our write
        """
        application = await self.store.get_or_404(db, application_id)
        require(actor, application, Action.SET_STATUS)

        current = application.application_status
        if current is target:
            return application
        if not can_transition(current, target):
            raise ValidationError(
                message=f"Cannot change application status from '{current.value}' to '{target.value}'",
                field="applicationStatus",
                context={"from": current.value, "to": target.value},
            )

        if not await self.store.update_status(db, application.id, current, target):
            raise ConflictError(
                message="Application status was changed by another request. Reload and retry.",
                context={"application_id": str(application.id), "expected": current.value},
            )
        logger.info(
            "Application %s status %s → %s by %s",
            application.id,
            current.value,
            target.value,
            actor.id,
        )
        return await self.store.get_or_404(db, application.id)

    async def set_feedback(self, db: AsyncSession, actor: Actor, application_id, feedback: str) -> Application:
        application = await self.store.get_or_404(db, application_id)
        require(actor, application, Action.SET_FEEDBACK)
        await self.store.set_feedback(db, application.id, feedback)
        return await self.store.get_or_404(db, application.id)

    # ── Payment ───────────────────────────────────────────────────────────

    async def mark_paid(self, db: AsyncSession, application_id: uuid.UUID) -> PaymentTransition:
        """
        unpaid → paid, idempotently. Authorization and provider checks are the
        reconciler's job; this only performs the guarded write.
        """
        transitioned = await self.store.mark_paid(db, application_id)
        application = await self.store.get_or_404(db, application_id)
        if transitioned:
            logger.info("Application %s payment status unpaid → paid", application_id)
        else:
            logger.info("Application %s already paid; payment confirmation is a no-op", application_id)
        return PaymentTransition(application=application, transitioned=transitioned)

    # ── Delete ────────────────────────────────────────────────────────────

    async def delete_application(self, db: AsyncSession, actor: Actor, application_id) -> None:
        """
        Owner may delete while pending (400 otherwise); Admin always;
        Moderator never (403).
        """
        application = await self.store.get_or_404(db, application_id)
        require(actor, application, Action.DELETE)

        # Non-admins were allowed because the row was pending; keep that
        # condition in the DELETE itself.
        expected = None if actor.role is Role.ADMIN else ApplicationStatus.PENDING
        if not await self.store.delete(db, application.id, expected=expected):
            if await self.store.get(db, application.id) is None:
                raise NotFoundError(resource="application", resource_id=str(application.id))
            raise ValidationError(
                message="Only pending applications can be deleted",
                field="applicationStatus",
            )
        logger.info("Application %s deleted by %s (%s)", application.id, actor.id, actor.role.value)


application_lifecycle = ApplicationLifecycle()
