"""
Tests for assignment lifecycle transitions and their guards.
"""

import uuid
from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import select

from shift_dispatch.core.errors import DomainValidationError, NotFoundError
from shift_dispatch.database import UnitOfWork
from shift_dispatch.models import Assignment, AssignmentStatus, AssignedBy, AuditLog, CancelType, Shift
from shift_dispatch.services import assignment_lifecycle as lifecycle
from tests.fixtures.test_data import NOW, fetch_all, make_assignment, make_driver, reload

TODAY = date(2026, 2, 2)


async def _seed(db, assignment):
    db.add(assignment)
    await db.commit()
    return assignment


class TestValidateParcelCounts:
    """Tests for completion count validation."""

    def test_valid_counts(self):
        lifecycle.validate_parcel_counts(120, 5, 2, "Business closed")

    def test_returned_exceeds_start(self):
        with pytest.raises(DomainValidationError):
            lifecycle.validate_parcel_counts(10, 11, 0, None)

    def test_negative_counts(self):
        with pytest.raises(DomainValidationError):
            lifecycle.validate_parcel_counts(10, -1, 0, None)

    def test_excepted_exceeds_returned(self):
        with pytest.raises(DomainValidationError):
            lifecycle.validate_parcel_counts(10, 2, 3, "notes")

    def test_excepted_requires_notes(self):
        with pytest.raises(DomainValidationError, match="notes"):
            lifecycle.validate_parcel_counts(10, 2, 1, "   ")


class TestConfirm:
    """Tests for driver confirmation."""

    async def test_confirm_inside_window(self, db_session, ctx, route, driver):
        assignment = await _seed(db_session, make_assignment(route, TODAY + timedelta(days=4), driver=driver))

        async with UnitOfWork(db_session) as uow:
            result = await lifecycle.confirm_assignment(uow, ctx, assignment.id, driver.id)

        assert result.confirmed_at == ctx.now()
        assert result.status == AssignmentStatus.SCHEDULED

    async def test_confirm_before_window_opens(self, db_session, ctx, route, driver):
        assignment = await _seed(db_session, make_assignment(route, TODAY + timedelta(days=10), driver=driver))

        with pytest.raises(DomainValidationError, match="not opened"):
            async with UnitOfWork(db_session) as uow:
                await lifecycle.confirm_assignment(uow, ctx, assignment.id, driver.id)

    async def test_confirm_after_deadline(self, db_session, ctx, route, driver):
        assignment = await _seed(db_session, make_assignment(route, TODAY + timedelta(days=1), driver=driver))

        with pytest.raises(DomainValidationError, match="deadline"):
            async with UnitOfWork(db_session) as uow:
                await lifecycle.confirm_assignment(uow, ctx, assignment.id, driver.id)

    async def test_confirm_other_drivers_assignment(self, db_session, ctx, route, driver):
        assignment = await _seed(db_session, make_assignment(route, TODAY + timedelta(days=4), driver=driver))

        with pytest.raises(DomainValidationError, match="belong"):
            async with UnitOfWork(db_session) as uow:
                await lifecycle.confirm_assignment(uow, ctx, assignment.id, uuid.uuid4())

    async def test_confirm_twice(self, db_session, ctx, route, driver):
        assignment = await _seed(db_session, make_assignment(
            route, TODAY + timedelta(days=4), driver=driver, confirmed_at=datetime(2026, 2, 1)))

        with pytest.raises(DomainValidationError, match="already confirmed"):
            async with UnitOfWork(db_session) as uow:
                await lifecycle.confirm_assignment(uow, ctx, assignment.id, driver.id)

    async def test_unknown_assignment(self, db_session, ctx, driver):
        with pytest.raises(NotFoundError):
            async with UnitOfWork(db_session) as uow:
                await lifecycle.confirm_assignment(uow, ctx, uuid.uuid4(), driver.id)


class TestShiftDay:
    """Arrive, record inventory, complete and edit on the shift day."""

    @pytest.fixture
    async def confirmed_today(self, db_session, route, driver):
        return await _seed(db_session, make_assignment(
            route, TODAY, driver=driver, confirmed_at=datetime(2026, 1, 30, 12, 0)))

    async def test_full_shift(self, db_session, session_factory, ctx, clock, driver, confirmed_today):
        clock.set(datetime(2026, 2, 2, 11, 30))  # 06:30 local

        async with UnitOfWork(db_session) as uow:
            shift = await lifecycle.arrive(uow, ctx, confirmed_today.id, driver.id)
        assert shift.arrived_at == clock.now()

        clock.advance(timedelta(minutes=20))
        async with UnitOfWork(db_session) as uow:
            shift = await lifecycle.record_inventory(uow, ctx, confirmed_today.id, driver.id, 120)
        assert shift.parcels_start == 120

        clock.advance(timedelta(hours=8))
        async with UnitOfWork(db_session) as uow:
            shift = await lifecycle.complete_shift(
                uow, ctx, confirmed_today.id, driver.id,
                parcels_returned=5, excepted_returns=2, exception_notes="  Business closed  ",
            )
        assert shift.parcels_delivered == 115
        assert shift.exception_notes == "Business closed"
        assert shift.editable_until == clock.now() + timedelta(hours=1)

        stored = await reload(session_factory, Assignment, confirmed_today.id)
        assert stored.status == AssignmentStatus.COMPLETED

    async def test_arrive_requires_confirmation(self, db_session, ctx, clock, route, driver):
        clock.set(datetime(2026, 2, 2, 11, 30))
        assignment = await _seed(db_session, make_assignment(route, TODAY, driver=driver))

        with pytest.raises(DomainValidationError, match="confirmed"):
            async with UnitOfWork(db_session) as uow:
                await lifecycle.arrive(uow, ctx, assignment.id, driver.id)

    async def test_arrive_after_deadline(self, db_session, ctx, driver, confirmed_today):
        # Default clock is 10:00 local, after the 09:00 arrival deadline
        with pytest.raises(DomainValidationError, match="deadline"):
            async with UnitOfWork(db_session) as uow:
                await lifecycle.arrive(uow, ctx, confirmed_today.id, driver.id)

    async def test_late_cover_arrives_within_grace(self, db_session, ctx, clock, route, driver):
        # Picked up at 10:00 local, an hour after the regular deadline
        cover = await _seed(db_session, make_assignment(
            route, TODAY, driver=driver, assigned_by=AssignedBy.BID, assigned_at=NOW, confirmed_at=NOW))
        clock.advance(timedelta(minutes=45))

        async with UnitOfWork(db_session) as uow:
            shift = await lifecycle.arrive(uow, ctx, cover.id, driver.id)

        assert shift.arrived_at == NOW + timedelta(minutes=45)

    async def test_late_cover_grace_expires(self, db_session, ctx, clock, route, driver):
        cover = await _seed(db_session, make_assignment(
            route, TODAY, driver=driver, assigned_by=AssignedBy.BID, assigned_at=NOW, confirmed_at=NOW))
        clock.advance(timedelta(minutes=90))

        with pytest.raises(DomainValidationError, match="deadline"):
            async with UnitOfWork(db_session) as uow:
                await lifecycle.arrive(uow, ctx, cover.id, driver.id)

    async def test_arrive_too_early(self, db_session, ctx, clock, driver, confirmed_today):
        clock.set(datetime(2026, 2, 2, 9, 0))  # 04:00 local
        with pytest.raises(DomainValidationError, match="early"):
            async with UnitOfWork(db_session) as uow:
                await lifecycle.arrive(uow, ctx, confirmed_today.id, driver.id)

    async def test_complete_requires_inventory(self, db_session, ctx, clock, driver, confirmed_today):
        clock.set(datetime(2026, 2, 2, 11, 30))
        async with UnitOfWork(db_session) as uow:
            await lifecycle.arrive(uow, ctx, confirmed_today.id, driver.id)

        with pytest.raises(DomainValidationError, match="Inventory"):
            async with UnitOfWork(db_session) as uow:
                await lifecycle.complete_shift(uow, ctx, confirmed_today.id, driver.id, parcels_returned=0)

    async def _complete(self, db_session, ctx, clock, driver, assignment):
        clock.set(datetime(2026, 2, 2, 11, 30))
        async with UnitOfWork(db_session) as uow:
            await lifecycle.arrive(uow, ctx, assignment.id, driver.id)
        async with UnitOfWork(db_session) as uow:
            await lifecycle.record_inventory(uow, ctx, assignment.id, driver.id, 100)
        clock.set(datetime(2026, 2, 2, 20, 0))
        async with UnitOfWork(db_session) as uow:
            await lifecycle.complete_shift(uow, ctx, assignment.id, driver.id, parcels_returned=10)

    async def test_edit_inside_window(self, db_session, ctx, clock, driver, confirmed_today):
        await self._complete(db_session, ctx, clock, driver, confirmed_today)

        clock.advance(timedelta(minutes=30))
        async with UnitOfWork(db_session) as uow:
            shift = await lifecycle.edit_shift(uow, ctx, confirmed_today.id, driver.id, parcels_returned=4)

        assert shift.parcels_returned == 4
        assert shift.parcels_delivered == 96

        result = await db_session.execute(
            select(AuditLog).where(AuditLog.action == "edit_completion")
        )
        entries = result.scalars().all()
        assert entries[0].changes["before"]["parcels_returned"] == 10

    async def test_edit_after_window(self, db_session, ctx, clock, driver, confirmed_today):
        await self._complete(db_session, ctx, clock, driver, confirmed_today)

        clock.advance(timedelta(hours=1))
        with pytest.raises(DomainValidationError, match="Edit window"):
            async with UnitOfWork(db_session) as uow:
                await lifecycle.edit_shift(uow, ctx, confirmed_today.id, driver.id, parcels_returned=4)


class TestCancel:
    """Tests for driver cancellation."""

    async def test_unconfirmed_cancel(self, db_session, session_factory, ctx, route, driver):
        assignment = await _seed(db_session, make_assignment(route, TODAY + timedelta(days=4), driver=driver))

        async with UnitOfWork(db_session) as uow:
            vacancy = await lifecycle.cancel_assignment(uow, ctx, assignment.id, driver.id, "Car trouble")

        assert vacancy.cancelled.status == AssignmentStatus.CANCELLED
        assert vacancy.cancelled.cancel_type == CancelType.DRIVER
        replacement = await reload(session_factory, Assignment, vacancy.replacement.id)
        assert replacement.status == AssignmentStatus.UNFILLED
        assert replacement.driver_id is None
        assert replacement.route_id == assignment.route_id
        assert replacement.date == assignment.date

        shifts = await fetch_all(session_factory, select(Shift).where(Shift.assignment_id == assignment.id))
        assert shifts[0].cancel_reason == "Car trouble"

    async def test_confirmed_cancel_is_late(self, db_session, ctx, route, driver):
        assignment = await _seed(db_session, make_assignment(
            route, TODAY + timedelta(days=4), driver=driver, confirmed_at=datetime(2026, 2, 1)))

        async with UnitOfWork(db_session) as uow:
            vacancy = await lifecycle.cancel_assignment(uow, ctx, assignment.id, driver.id)

        assert vacancy.cancelled.cancel_type == CancelType.LATE

    async def test_cancel_after_shift_start_has_no_replacement(self, db_session, ctx, clock, route, driver):
        assignment = await _seed(db_session, make_assignment(
            route, TODAY, driver=driver, confirmed_at=datetime(2026, 1, 30),
            status=AssignmentStatus.ACTIVE))

        async with UnitOfWork(db_session) as uow:
            vacancy = await lifecycle.cancel_assignment(uow, ctx, assignment.id, driver.id)

        assert vacancy.replacement is None

    async def test_cannot_cancel_completed(self, db_session, ctx, route, driver):
        assignment = await _seed(db_session, make_assignment(
            route, TODAY - timedelta(days=1), driver=driver, status=AssignmentStatus.COMPLETED))

        with pytest.raises(DomainValidationError, match="Cannot cancel"):
            async with UnitOfWork(db_session) as uow:
                await lifecycle.cancel_assignment(uow, ctx, assignment.id, driver.id)

    async def test_failed_transition_rolls_back(self, db_session, session_factory, ctx, route, driver):
        """A guard failure leaves nothing behind from the unit of work."""
        assignment = await _seed(db_session, make_assignment(route, TODAY + timedelta(days=4), driver=driver))
        assignment_id, driver_id = assignment.id, driver.id

        with pytest.raises(RuntimeError):
            async with UnitOfWork(db_session) as uow:
                await lifecycle.cancel_assignment(uow, ctx, assignment_id, driver_id)
                raise RuntimeError("boom")

        # The rollback expires every instance the session holds
        stored = await reload(session_factory, Assignment, assignment_id)
        assert stored.status == AssignmentStatus.SCHEDULED
        remaining = await fetch_all(session_factory, select(Assignment))
        assert len(remaining) == 1


class TestCandidates:
    """Queries used by the periodic jobs."""

    async def test_auto_drop_candidates(self, db_session, ctx, route, driver):
        other = make_driver()
        db_session.add(other)
        due = await _seed(db_session, make_assignment(route, TODAY + timedelta(days=2), driver=driver))
        # Deadline still ahead
        await _seed(db_session, make_assignment(route, TODAY + timedelta(days=3), driver=other))
        # Already confirmed
        await _seed(db_session, make_assignment(
            route, TODAY + timedelta(days=1), driver=other, confirmed_at=datetime(2026, 1, 30)))

        assert await lifecycle.find_auto_drop_candidates(db_session, ctx) == [due.id]

    async def test_reminder_candidates(self, db_session, ctx, route, driver):
        due = await _seed(db_session, make_assignment(route, TODAY + timedelta(days=3), driver=driver))
        await _seed(db_session, make_assignment(route, TODAY + timedelta(days=5), driver=driver))

        candidates = await lifecycle.find_reminder_candidates(db_session, ctx)
        assert [a.id for a in candidates] == [due.id]
