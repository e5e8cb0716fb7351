"""
ScholarStream Backend - Application Lifecycle Tests
=====================================================

What we test:
    ✅ Creation snapshot, uniqueness (409) and unknown scholarship (404)
    ✅ The status state machine: legal moves, terminal states, no-op repeats
    ✅ A lost optimistic race surfaces as ConflictError
    ✅ Deletion gate: owner only while pending, admin always, moderator never
    ✅ mark_paid reports the transition once
"""

import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from scholarstream.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from scholarstream.models.application import ApplicationStatus, PaymentStatus
from scholarstream.models.user import Role
from scholarstream.services.application_store import application_store
from scholarstream.services.lifecycle import TERMINAL_STATUSES, application_lifecycle, can_transition


class TestStateMachine:

    @pytest.mark.parametrize(
        "current,target",
        [
            (ApplicationStatus.PENDING, ApplicationStatus.PROCESSING),
            (ApplicationStatus.PENDING, ApplicationStatus.REJECTED),
            (ApplicationStatus.PROCESSING, ApplicationStatus.COMPLETED),
            (ApplicationStatus.PROCESSING, ApplicationStatus.REJECTED),
        ],
    )
    def test_legal_transitions(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (ApplicationStatus.PENDING, ApplicationStatus.COMPLETED),
            (ApplicationStatus.PROCESSING, ApplicationStatus.PENDING),
            (ApplicationStatus.COMPLETED, ApplicationStatus.PROCESSING),
            (ApplicationStatus.REJECTED, ApplicationStatus.PENDING),
            (ApplicationStatus.COMPLETED, ApplicationStatus.REJECTED),
        ],
    )
    def test_illegal_transitions(self, current, target):
        assert not can_transition(current, target)

    def test_terminal_statuses(self):
        assert TERMINAL_STATUSES == {ApplicationStatus.COMPLETED, ApplicationStatus.REJECTED}


class TestCreateApplication:

    @pytest.mark.asyncio
    async def test_snapshot_and_initial_state(self, db_session, make_user, make_scholarship):
        student = await make_user()
        scholarship = await make_scholarship(application_fees="10.00", service_charge="5.00")

        application = await application_lifecycle.create_application(db_session, student, str(scholarship.id))

        assert application.application_status is ApplicationStatus.PENDING
        assert application.payment_status is PaymentStatus.UNPAID
        assert application.user_name == student.name
        assert application.user_email == student.email
        assert application.university_name == scholarship.university_name
        assert application.degree == "Masters"
        assert application.total_charge == Decimal("15.00")

    @pytest.mark.asyncio
    async def test_second_application_conflicts(self, db_session, make_user, make_scholarship):
        student = await make_user()
        scholarship = await make_scholarship()
        await application_lifecycle.create_application(db_session, student, scholarship.id)
        await db_session.commit()

        with pytest.raises(ConflictError):
            await application_lifecycle.create_application(db_session, student, scholarship.id)

        applications = await application_store.list_for_user(db_session, student.id)
        assert len(applications) == 1

    @pytest.mark.asyncio
    async def test_unique_constraint_backs_the_precheck(self, db_session, make_user, make_scholarship):
        """A concurrent insert that slips past the pre-check still gets 409."""
        student = await make_user()
        scholarship = await make_scholarship()
        await application_lifecycle.create_application(db_session, student, scholarship.id)
        await db_session.commit()

        with patch.object(application_store, "find_by_pair", AsyncMock(return_value=None)):
            with pytest.raises(ConflictError):
                await application_lifecycle.create_application(db_session, student, scholarship.id)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reference", ["not-a-uuid", str(uuid.uuid4())])
    async def test_unknown_or_malformed_scholarship(self, db_session, make_user, reference):
        with pytest.raises(NotFoundError, match="Scholarship not found"):
            await application_lifecycle.create_application(db_session, await make_user(), reference)


class TestSetStatus:

    @pytest.mark.asyncio
    async def test_moderator_walks_the_happy_path(self, db_session, make_user, make_application):
        application = await make_application(await make_user())
        moderator = await make_user(Role.MODERATOR)

        updated = await application_lifecycle.set_status(
            db_session, moderator, application.id, ApplicationStatus.PROCESSING
        )
        assert updated.application_status is ApplicationStatus.PROCESSING

        updated = await application_lifecycle.set_status(
            db_session, moderator, application.id, ApplicationStatus.COMPLETED
        )
        assert updated.application_status is ApplicationStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_terminal_state_blocks_further_transitions(self, db_session, make_user, make_application):
        application = await make_application(await make_user(), status=ApplicationStatus.REJECTED)
        moderator = await make_user(Role.MODERATOR)

        with pytest.raises(ValidationError) as exc_info:
            await application_lifecycle.set_status(
                db_session, moderator, application.id, ApplicationStatus.PROCESSING
            )
        assert exc_info.value.field == "applicationStatus"

    @pytest.mark.asyncio
    async def test_completed_application_cannot_be_rejected(self, db_session, make_user, make_application):
        application = await make_application(await make_user(), status=ApplicationStatus.COMPLETED)
        moderator = await make_user(Role.MODERATOR)

        with pytest.raises(ValidationError):
            await application_lifecycle.set_status(
                db_session, moderator, application.id, ApplicationStatus.REJECTED
            )
        unchanged = await application_store.get(db_session, application.id)
        assert unchanged.application_status is ApplicationStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_same_status_is_a_no_op(self, db_session, make_user, make_application):
        application = await make_application(await make_user(), status=ApplicationStatus.COMPLETED)
        admin = await make_user(Role.ADMIN)

        with patch.object(application_store, "update_status", AsyncMock()) as mock_update:
            result = await application_lifecycle.set_status(
                db_session, admin, application.id, ApplicationStatus.COMPLETED
            )
        assert result.application_status is ApplicationStatus.COMPLETED
        mock_update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lost_race_is_a_conflict(self, db_session, make_user, make_application):
        application = await make_application(await make_user())
        moderator = await make_user(Role.MODERATOR)

        with patch.object(application_store, "update_status", AsyncMock(return_value=False)):
            with pytest.raises(ConflictError):
                await application_lifecycle.set_status(
                    db_session, moderator, application.id, ApplicationStatus.PROCESSING
                )

    @pytest.mark.asyncio
    async def test_student_cannot_change_status(self, db_session, make_user, make_application):
        owner = await make_user()
        application = await make_application(owner)

        with pytest.raises(ForbiddenError):
            await application_lifecycle.set_status(
                db_session, owner, application.id, ApplicationStatus.PROCESSING
            )

    @pytest.mark.asyncio
    async def test_missing_application_is_not_found_before_authorization(self, db_session, make_user):
        student = await make_user()
        with pytest.raises(NotFoundError):
            await application_lifecycle.set_status(
                db_session, student, uuid.uuid4(), ApplicationStatus.PROCESSING
            )


class TestFeedback:

    @pytest.mark.asyncio
    async def test_moderator_sets_feedback(self, db_session, make_user, make_application):
        application = await make_application(await make_user())
        moderator = await make_user(Role.MODERATOR)

        updated = await application_lifecycle.set_feedback(
            db_session, moderator, application.id, "Please upload your transcript."
        )
        assert updated.feedback == "Please upload your transcript."


class TestDelete:

    @pytest.mark.asyncio
    async def test_owner_deletes_pending(self, db_session, make_user, make_application):
        owner = await make_user()
        application = await make_application(owner)

        await application_lifecycle.delete_application(db_session, owner, application.id)
        assert await application_store.get(db_session, application.id) is None

    @pytest.mark.asyncio
    async def test_owner_cannot_delete_processing(self, db_session, make_user, make_application):
        owner = await make_user()
        application = await make_application(owner, status=ApplicationStatus.PROCESSING)

        with pytest.raises(ValidationError, match="Only pending applications"):
            await application_lifecycle.delete_application(db_session, owner, application.id)
        assert await application_store.get(db_session, application.id) is not None

    @pytest.mark.asyncio
    async def test_admin_deletes_any_status(self, db_session, make_user, make_application):
        application = await make_application(await make_user(), status=ApplicationStatus.COMPLETED)
        admin = await make_user(Role.ADMIN)

        await application_lifecycle.delete_application(db_session, admin, application.id)
        assert await application_store.get(db_session, application.id) is None

    @pytest.mark.asyncio
    async def test_moderator_cannot_delete(self, db_session, make_user, make_application):
        application = await make_application(await make_user())
        moderator = await make_user(Role.MODERATOR)

        with pytest.raises(ForbiddenError, match="Admin access required"):
            await application_lifecycle.delete_application(db_session, moderator, application.id)

    @pytest.mark.asyncio
    async def test_moderator_cannot_delete_own_pending(self, db_session, make_user, make_application):
        moderator = await make_user(Role.MODERATOR)
        application = await make_application(moderator)

        with pytest.raises(ForbiddenError, match="Admin access required"):
            await application_lifecycle.delete_application(db_session, moderator, application.id)
        assert await application_store.get(db_session, application.id) is not None

    @pytest.mark.asyncio
    async def test_status_change_between_check_and_delete(self, db_session, make_user, make_application):
        owner = await make_user()
        application = await make_application(owner)

        with patch.object(application_store, "delete", AsyncMock(return_value=False)):
            with pytest.raises(ValidationError):
                await application_lifecycle.delete_application(db_session, owner, application.id)


class TestMarkPaid:

    @pytest.mark.asyncio
    async def test_reports_transition_once(self, db_session, make_user, make_application):
        application = await make_application(await make_user())

        first = await application_lifecycle.mark_paid(db_session, application.id)
        second = await application_lifecycle.mark_paid(db_session, application.id)

        assert first.transitioned is True
        assert second.already_paid is True
        assert second.application.payment_status is PaymentStatus.PAID
